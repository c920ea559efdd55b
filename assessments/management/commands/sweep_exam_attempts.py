"""
Sweep Exam Attempts Management Command - Exam Assessment and Grading Engine

Dieses Management Command schließt alle Prüfungsversuche, die nach dem Ende
ihrer Prüfung noch in Bearbeitung sind. Gedacht für den Aufruf per Cron.

Features:
- Erzwungene Abgabe für Prüfungen mit auto_submit (gespeicherte Antworten)
- Markierung als ABANDONED für Prüfungen ohne auto_submit
- Idempotent, parallele Läufe sind unkritisch

Author: DSP Development Team
Version: 1.0.0
"""

import logging

from django.core.management.base import BaseCommand, CommandError

from assessments.services import ResponseCollectorService

# Logger einrichten
logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """
    Django Management Command für den Ablauf-Sweep offener Prüfungsversuche.
    """

    help = "Gibt abgelaufene Prüfungsversuche automatisch ab oder markiert sie als abgebrochen."

    def handle(self, *args, **options):
        """
        Hauptausführungsmethode für das Management Command.

        Raises:
            CommandError: Bei Fehlern während der Ausführung
        """
        self.stdout.write("Suche nach abgelaufenen Prüfungsversuchen...")

        try:
            result = ResponseCollectorService().sweep_expired_attempts()
        except Exception as e:
            logger.error(f"Fehler beim Ausführen von sweep_exam_attempts: {e}", exc_info=True)
            raise CommandError(f"Ein Fehler ist aufgetreten: {e}")

        if result.processed == 0 and result.skipped == 0:
            self.stdout.write(self.style.SUCCESS("Keine abgelaufenen Versuche gefunden."))
            return

        self.stdout.write(
            self.style.SUCCESS(
                f"{result.submitted} Versuche abgegeben, {result.abandoned} als abgebrochen markiert, "
                f"{result.skipped} übersprungen."
            )
        )
