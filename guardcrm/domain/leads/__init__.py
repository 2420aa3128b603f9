"""Leads domain - Intake, deduplication, scoring and assignment"""
