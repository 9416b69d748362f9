"""Configuration constants for the stream notification cog."""

# ============================
# 🛠️ CONFIG - EDIT HERE
# ============================
# ⚠️ Secrets (Client-IDs, API-Keys) KOMMEN NICHT HIER REIN, sondern aus ENV (service/config.py)!

# Plattform-Schlüssel (so auch in der DB gespeichert)
PLATFORM_TWITCH = "twitch"
PLATFORM_MIXER = "mixer"
PLATFORM_YOUTUBE = "youtube"
PLATFORMS = (PLATFORM_TWITCH, PLATFORM_MIXER, PLATFORM_YOUTUBE)

# Abonnenten-Scopes
SCOPE_GUILD = "guild"
SCOPE_USER = "user"

# Verhalten bei 18+-Streams (pro Guild/User)
MATURE_NOTHING = "nothing"
MATURE_IGNORE = "ignore"
MATURE_BANNER = "banner"
MATURE_BEHAVIORS = (MATURE_NOTHING, MATURE_IGNORE, MATURE_BANNER)

DEFAULT_LOCALE = "de"

# Poll-Intervalle (Sekunden)
TWITCH_POLL_INTERVAL_SECONDS = 150
MIXER_POLL_INTERVAL_SECONDS = 150
YOUTUBE_POLL_INTERVAL_SECONDS = 180
# YouTube-Quota: zwischen zwei kompletten Fetches mindestens so lange warten
YOUTUBE_MIN_FETCH_GAP_SECONDS = 180
# Kanal-Profile (Avatar/Name) werden so lange gecached
YOUTUBE_CHANNEL_CACHE_SECONDS = 600

# Helix erlaubt max. 100 IDs pro Request
TWITCH_BATCH_SIZE = 100
MIXER_BATCH_SIZE = 50

# Twitch-Logins: 3-24 Zeichen, a-z 0-9 _
TWITCH_LOGIN_PATTERN = r"^[a-z0-9_]{3,24}$"
MIXER_NAME_PATTERN = r"^[A-Za-z0-9_-]{1,32}$"
YOUTUBE_CHANNEL_PATTERN = r"^UC[A-Za-z0-9_-]{22}$"
YOUTUBE_USERNAME_PATTERN = r"^[A-Za-z0-9._-]{1,64}$"

# HTTP / Rate-Limits
HTTP_TIMEOUT_SECONDS = 15
HTTP_MAX_ATTEMPTS = 4
HTTP_MAX_RETRY_DELAY_SECONDS = 60.0

# Webhooks (WebSub)
WEBHOOK_DEFAULT_LEASE_SECONDS = 864000      # 10 Tage, Maximum beim Twitch-Hub
WEBHOOK_RENEW_AT_FRACTION = 0.9             # Erneuerung bei 90% der Lease
WEBHOOK_HUB_DEATH_SECONDS = 300             # gespeicherte Hooks sind danach tot
WEBHOOK_SIGNATURE_ALGORITHMS = ("sha1", "sha256", "sha384", "sha512")

# Aufräumen alter Benachrichtigungen
NOTIFICATION_RETENTION_HOURS = 24
CLEANUP_INTERVAL_HOURS = 24

# Sharding
SHARD_LEAD_ID = 0
BRIDGE_TIMEOUT_SECONDS = 5.0

# /streams list
LIST_PAGE_SIZE = 10

# Embed-Farben
TWITCH_BRAND_COLOR_HEX = 0x9146FF
MIXER_BRAND_COLOR_HEX = 0x1FBAED
YOUTUBE_BRAND_COLOR_HEX = 0xFF0000
OFFLINE_COLOR_HEX = 0x36393F

TWITCH_ICON_URL = "https://i.imgur.com/2JHEBZk.png"
MIXER_ICON_URL = "https://i.imgur.com/fQsQPkd.png"
YOUTUBE_ICON_URL = "https://i.imgur.com/7Li5Iu2.png"
