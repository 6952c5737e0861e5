"""JSON API over sync, analysis and reports."""
