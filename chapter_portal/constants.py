# chapter_portal/constants.py
# Table names, header layouts and fixed vocabularies

ROSTER_TABLE = "Sigma"
ROSTER_EMAIL = "Email"
ROSTER_NAME = "Name"
ROSTER_POSITION = "Position"

POLL_TABLE = "RankedChoicePolls"
POLL_HEADERS: list[str] = [
    "Poll ID", "Question", "Options (JSON)", "Votes (JSON)",
    "Creator", "Created At", "Status", "Threshold", "Anonymous",
]

BUTTON_TABLE = "Buttons"
BUTTON_HEADERS: list[str] = [
    "ButtonID", "ButtonName", "Description", "Icon", "Color",
    "AccessType", "AccessList", "Content", "CreatedBy",
    "OwnerPosition", "ExcludePledges", "LastModified",
]

RUSH_INDEX_TABLE = "Rush Index"
RUSH_INDEX_HEADERS: list[str] = [
    "ID", "Name", "Date", "Description", "TimestampMs",
    "RecruitsTabId", "CommentsTabId", "Locked",
]

RECRUIT_HEADERS: list[str] = [
    "ID", "Name", "Email", "Phone", "Instagram", "Tier",
    "PhotoURL", "PrimaryContacts", "Likes", "Dislikes", "Met",
]

COMMENT_HEADERS: list[str] = [
    "CommentID", "RecruitID", "Author", "Text", "TimestampMs",
]

# Sentinels for roster entries missing a name or a position
UNKNOWN_NAME = "Unknown"
NO_POSITION = "None"

ROSTER_MANAGERS: frozenset[str] = frozenset({"Alpha", "Beta", "Sigma", "Chi"})
RUSH_CHAIR = "Rho"
ADMIN_POSITION = "Chi"

OFFICER_POSITIONS: list[str] = [
    "Alpha", "Beta", "Sigma", "Chi", "Iota", "Tau", "Gamma", "Rho", "Theta",
    "Associate Tau", "Associate Gamma", "Associate Iota", "Associate Rho",
    "Pi", "Delta", "Associate Delta", "Psi", "Upsilon", "Gamma's Theta",
    "Phi", "Omicron", "Mu",
]

DEFAULT_BUTTON_COLOR = "#ffd700"

# Live update event types
EVENT_REFRESH = "refresh"
EVENT_ROSTER_UPDATE = "roster-update"
EVENT_PRESENCE = "presence"
EVENT_PING = "ping"
EVENT_ANNOUNCEMENT = "announcement"
