from __future__ import annotations


def split_group_dns(text: str) -> list[str]:
    if not text:
        return []
    return [x.strip() for x in text.split(";") if x.strip()]
