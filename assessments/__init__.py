"""
Assessments Package - Exam Assessment and Grading Engine

Dieses Paket enthält das Prüfungs- und Bewertungssystem: zeitgebundene
Prüfungen mit eingebetteten Fragen, Versuche von Studierenden,
automatische und manuelle Bewertung sowie Statistiken.

Struktur:
- models.py: Exam, ExamQuestion, ExamResponse
- services/: Prüfungsdefinition, Versuche, Bewertung, Statistik
- views/: REST-API für Dozenten und Studierende
- management/: Django Management Commands (Ablauf-Sweep)

Author: DSP Development Team
Version: 1.0.0
"""
