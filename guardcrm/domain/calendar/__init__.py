"""Calendar domain - Provider OAuth connections and ICS subscription feeds"""
