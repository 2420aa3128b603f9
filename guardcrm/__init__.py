"""GuardCRM API - security guard staffing and CRM backend"""
