from __future__ import annotations

from ..ad import ADConfig
from ..env_settings import EnvSettings


def ad_cfg_from_env(env: EnvSettings) -> ADConfig | None:
    """Build ADConfig from environment settings; None if AD is not configured."""
    if not env.ldap_url or not env.ldap_base_dn or not env.ldap_service_user:
        return None
    return ADConfig(
        url=env.ldap_url.strip(),
        base_dn=env.ldap_base_dn.strip(),
        service_user=env.ldap_service_user.strip(),
        service_password=env.ldap_service_password,
        auth_group=env.ldap_auth_group,
        starttls=env.ldap_starttls,
        tls_validate=env.ldap_tls_validate,
        connect_timeout_ms=env.ldap_connect_timeout_ms,
        read_timeout_ms=env.ldap_read_timeout_ms,
        pool_timeout_s=env.ldap_pool_timeout_s,
    )
