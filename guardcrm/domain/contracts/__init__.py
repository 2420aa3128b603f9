"""Contracts domain - Contract lifecycle, renewals and churn risk"""
