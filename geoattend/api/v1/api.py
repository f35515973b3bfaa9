"""
V1 API router aggregator — wires all endpoint modules together.
"""

from fastapi import APIRouter

from geoattend.api.v1.endpoints import (auth, bot, employees, jobs,
                                        notifications, reports)

api_router = APIRouter()

# Auth (login, refresh, profile)
api_router.include_router(auth.router)

# Employees and their attendance history
api_router.include_router(employees.router)

# Reports, absentees, health
api_router.include_router(reports.router)

# Scheduled jobs
api_router.include_router(jobs.router)

# Admin broadcasts and one-off messages
api_router.include_router(notifications.router)

# Telegram webhook
api_router.include_router(bot.router)
