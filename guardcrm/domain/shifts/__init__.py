"""Shifts domain - Shift board workflow and urgent alerts"""
