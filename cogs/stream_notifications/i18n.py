"""Minimal string table (de/en) for notifications and command replies."""

from __future__ import annotations

from typing import Any, Dict

from .constants import DEFAULT_LOCALE

STRINGS: Dict[str, Dict[str, str]] = {
    "de": {
        "stream.online": "{everyone}**{username}** ist jetzt live auf {platform}!",
        "stream.updated": "{everyone}**{username}** ist live auf {platform}!",
        "stream.offline": "**{username}** hat den Stream auf {platform} beendet.",
        "stream.offline_title": "[Offline] {title}",
        "stream.description": "{username} streamt gerade!",
        "stream.category": "Kategorie",
        "stream.viewers": "Zuschauer",
        "stream.mature": "Altersfreigabe",
        "stream.mature_yes": "18+",
        "stream.mature_no": "Für alle",
        "stream.mature_banner": "⚠️ **18+** Inhalte",
        "stream.rerun": "Wiederholung",
        "stream.no_category": "Keine Kategorie",
        "error.generic": "Es ist ein Fehler aufgetreten.",
        "error.not_found": "Nicht gefunden.",
        "error.invalid_input": "Ungültige Eingabe.",
        "error.upstream": "Die Plattform ist gerade nicht erreichbar, bitte später erneut versuchen.",
        "error.already_tracked": "Dieser Streamer wird bereits überwacht.",
        "error.not_tracked": "Dieser Streamer wird nicht überwacht.",
        "error.already_running": "Läuft bereits.",
        "error.not_running": "Läuft nicht.",
        "error.already_subscribed": "Du folgst diesem Streamer bereits.",
        "error.not_subscribed": "Du folgst diesem Streamer nicht.",
        "error.delivery": "Nachricht konnte nicht zugestellt werden.",
        "cmd.subcommands": "Subcommands: add, remove, list, channel, mention, mature, message",
        "cmd.unknown_platform": "Unbekannte Plattform `{platform}`. Verfügbar: {available}",
        "cmd.added": "✅ **{username}** ({platform}) hinzugefügt.",
        "cmd.removed": "🗑️ **{username}** ({platform}) entfernt.",
        "cmd.channel_set": "Live-Posts gehen jetzt in {channel}",
        "cmd.channel_cleared": "Benachrichtigungskanal entfernt.",
        "cmd.channel_missing": "⚠️ Es ist noch kein Kanal gesetzt: `/streams channel #kanal`",
        "cmd.mention_on": "@everyone für **{username}** aktiviert.",
        "cmd.mention_off": "@everyone für **{username}** deaktiviert.",
        "cmd.mature_set": "18+-Verhalten: `{behavior}`",
        "cmd.mature_invalid": "Erlaubt: {allowed}",
        "cmd.message_set": "Eigener Text für **{username}** gespeichert.",
        "cmd.message_cleared": "Eigener Text für **{username}** entfernt.",
        "cmd.list_empty": "Keine Streamer abonniert.",
        "cmd.list_header": "Abonnierte Streamer (Seite {page}/{pages}):",
        "cmd.list_page_invalid": "Seite {page} existiert nicht (max. {pages}).",
    },
    "en": {
        "stream.online": "{everyone}**{username}** is now live on {platform}!",
        "stream.updated": "{everyone}**{username}** is live on {platform}!",
        "stream.offline": "**{username}** ended the stream on {platform}.",
        "stream.offline_title": "[Offline] {title}",
        "stream.description": "{username} is streaming!",
        "stream.category": "Category",
        "stream.viewers": "Viewers",
        "stream.mature": "Audience",
        "stream.mature_yes": "18+",
        "stream.mature_no": "Everyone",
        "stream.mature_banner": "⚠️ **18+** content",
        "stream.rerun": "Rerun",
        "stream.no_category": "No category",
        "error.generic": "Something went wrong.",
        "error.not_found": "Not found.",
        "error.invalid_input": "Invalid input.",
        "error.upstream": "The platform is unavailable right now, please try again later.",
        "error.already_tracked": "This streamer is already tracked.",
        "error.not_tracked": "This streamer is not tracked.",
        "error.already_running": "Already running.",
        "error.not_running": "Not running.",
        "error.already_subscribed": "You already follow this streamer.",
        "error.not_subscribed": "You do not follow this streamer.",
        "error.delivery": "The message could not be delivered.",
        "cmd.subcommands": "Subcommands: add, remove, list, channel, mention, mature, message",
        "cmd.unknown_platform": "Unknown platform `{platform}`. Available: {available}",
        "cmd.added": "✅ Added **{username}** ({platform}).",
        "cmd.removed": "🗑️ Removed **{username}** ({platform}).",
        "cmd.channel_set": "Live posts now go to {channel}",
        "cmd.channel_cleared": "Notification channel removed.",
        "cmd.channel_missing": "⚠️ No channel set yet: `/streams channel #channel`",
        "cmd.mention_on": "@everyone enabled for **{username}**.",
        "cmd.mention_off": "@everyone disabled for **{username}**.",
        "cmd.mature_set": "Mature behaviour: `{behavior}`",
        "cmd.mature_invalid": "Allowed: {allowed}",
        "cmd.message_set": "Custom text for **{username}** saved.",
        "cmd.message_cleared": "Custom text for **{username}** removed.",
        "cmd.list_empty": "No streamers followed.",
        "cmd.list_header": "Followed streamers (page {page}/{pages}):",
        "cmd.list_page_invalid": "Page {page} does not exist (max {pages}).",
    },
}


def t(locale: str, key: str, **kwargs: Any) -> str:
    table = STRINGS.get(locale) or STRINGS[DEFAULT_LOCALE]
    text = table.get(key) or STRINGS[DEFAULT_LOCALE].get(key) or key
    if kwargs:
        try:
            return text.format(**kwargs)
        except (KeyError, IndexError, ValueError):
            return text
    return text
