"""
Assessment Views Package - Exam Assessment and Grading Engine

Dieses Paket enthält alle Views des Prüfungssystems.

Features:
- Dozenten-Views: Prüfungsverwaltung, Bewertung, Statistiken
- Studierenden-Views: Prüfungszugriff, Versuche, Abgabe
- Rollenbasierte Zugriffskontrolle

Author: DSP Development Team
Version: 1.0.0
"""

from .instructor_views import *
from .student_views import *
