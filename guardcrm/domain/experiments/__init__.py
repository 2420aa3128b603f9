"""Experiments domain - A/B tests for forms, emails and landing pages"""
