"""Access domain - Roles, permission matrix and user administration"""
