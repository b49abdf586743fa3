"""User-facing messages built from parser diagnostics (French and English)."""

from typing import Literal, Optional

from ..lite_models import ParseDiagnostics

Lang = Literal["fr", "en"]
FatalContext = Literal["file", "calendar"]


def build_parser_warning_message(
    diagnostics: Optional[ParseDiagnostics], lang: Lang = "fr"
) -> Optional[str]:
    """Summary of a partially failed parse, or None when there were no errors."""
    if diagnostics is None or not diagnostics.parser_errors:
        return None
    errors = diagnostics.parser_errors
    skipped = diagnostics.skipped_events_without_uid
    if lang == "fr":
        return (
            f"Import terminé avec avertissements: {errors} erreur(s) de parsing, "
            f"{skipped} événement(s) ignoré(s) sans UID."
        )
    return (
        f"Import finished with warnings: {errors} parsing error(s), "
        f"{skipped} event(s) skipped without UID."
    )


def build_parser_fatal_message(
    diagnostics: Optional[ParseDiagnostics],
    lang: Lang = "fr",
    context: FatalContext = "calendar",
) -> str:
    """Message for a parse that yielded no usable events.

    Args:
        diagnostics: Parser diagnostics (may be None)
        lang: "fr" or "en"
        context: "file" for local imports, "calendar" for remote calendars

    Returns:
        Message including the first parser error sample when one exists
    """
    errors = diagnostics.parser_errors if diagnostics is not None else 0
    samples = diagnostics.parser_error_messages if diagnostics is not None else ()
    detail = f" {samples[0]}" if samples else ""
    if lang == "fr":
        if context == "file":
            return f"Le fichier ICS est invalide ({errors} erreur(s)).{detail}"
        return f"Le calendrier ICS est invalide ({errors} erreur(s)).{detail}"
    if context == "file":
        return f"Invalid ICS file ({errors} error(s)).{detail}"
    return f"Invalid ICS calendar ({errors} error(s)).{detail}"
