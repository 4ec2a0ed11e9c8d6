from __future__ import annotations

from database.models import TypeDescriptor

CASE_STATUS_LABELS = {
    "created": "Created",
    "opened": "Open",
    "adminOnly": "Admin Only",
    "closing": "Closing",
    "closed": "Closed",
}

# Built-in case types every guild can use without configuring custom ones.
LEGACY_CASE_TYPES: dict[str, TypeDescriptor] = {
    "18_verify": TypeDescriptor(type_id="18_verify", display_name="18+ Verification", emoji="🔞"),
    "ban_appeal": TypeDescriptor(type_id="ban_appeal", display_name="Ban Appeal", emoji="⚖️"),
    "player_report": TypeDescriptor(type_id="player_report", display_name="Player Report", emoji="📢"),
    "bug_report": TypeDescriptor(type_id="bug_report", display_name="Bug Report", emoji="🐛"),
    "other": TypeDescriptor(type_id="other", display_name="Other", emoji="❓"),
}

WELCOME_MESSAGE = (
    "Welcome, {name}! Please wait for a staff member to assist you. "
    "Once the issue is resolved, you or a staff member can close the {noun} with the button below."
)

CLOSE_REASON = "Case closed and archived"
