"""Exam portal: school examination authoring, approval, timed attempts and grading."""
