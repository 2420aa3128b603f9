"""Utils package"""
