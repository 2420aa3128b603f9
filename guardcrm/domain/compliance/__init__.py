"""Compliance domain - Certification tracking and compliance reports"""
