"""Shared package"""
