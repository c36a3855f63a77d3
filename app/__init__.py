"""
Application package for the Box Admin Telegram bot.

This package contains:
- Telegram bot implementation (`app.bot`)
- Shared configuration and utilities (`app.core`)
- Supabase integration and view models (`app.db`)
"""
