from __future__ import annotations


def dn_first_component_value(dn: str) -> str:
    """Return first RDN value from a DN (e.g. CN=Help Desk,OU=Groups,... -> Help Desk)."""
    s = (dn or "").strip()
    if not s:
        return ""

    # Extract first RDN (escaped characters are kept, the backslash is dropped)
    first: list[str] = []
    esc = False
    for ch in s:
        if esc:
            first.append(ch)
            esc = False
            continue
        if ch == "\\":
            esc = True
            continue
        if ch == ",":
            break
        first.append(ch)
    rdn = "".join(first).strip()

    if "=" in rdn:
        _, val = rdn.split("=", 1)
        return val.strip()
    return rdn
