"""
SmartCalendar: chat-driven calendar assistant
"""
