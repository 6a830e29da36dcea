"""
Admin check — who may run admin-only commands.

A member is an admin if any of their roles is named in the guild's
`admin_group` setting, if they own the guild, or if they hold Discord's
built-in administrator permission. Direct messages have no admins.
"""

import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger("Permissions")


def admin_roles(settings: Optional[Dict[str, Any]]) -> List[str]:
    """Configured admin role names. Tolerates a missing or scalar setting."""
    group = (settings or {}).get("admin_group")
    if not group:
        return []
    if isinstance(group, str):
        return [group]
    return [str(g) for g in group]


def is_admin(message: Any, settings: Optional[Dict[str, Any]] = None) -> bool:
    guild = getattr(message, "guild", None)
    member = getattr(message, "author", None)
    if guild is None or member is None:
        return False

    wanted = {name.lower() for name in admin_roles(settings)}
    if wanted:
        for role in getattr(member, "roles", None) or []:
            if getattr(role, "name", "").lower() in wanted:
                return True

    if getattr(guild, "owner_id", None) is not None and guild.owner_id == member.id:
        return True

    permissions = getattr(member, "guild_permissions", None)
    if permissions is not None and getattr(permissions, "administrator", False) is True:
        return True

    return False
