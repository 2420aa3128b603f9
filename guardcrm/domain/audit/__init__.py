"""Audit domain - Signed audit trail and data retention"""
