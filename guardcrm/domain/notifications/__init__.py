"""Notifications domain - In-app notifications, preferences and digests"""
