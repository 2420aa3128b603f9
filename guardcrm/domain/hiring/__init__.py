"""Hiring domain - Guard application pipeline (Kanban board)"""
