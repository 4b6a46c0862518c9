"""
Stanford University board. Requires a SUNet login.
"""

import time

from core.models import Job

from .base import BoardStrategy, LoginFlow, fill_if_present


class StanfordStrategy(BoardStrategy):
    name = "Stanford University"
    login_flow = LoginFlow.CREDENTIALS
    login_url = "https://careersearch.stanford.edu"

    login_selectors = {
        "username": "#username",
        "password": "#password",
        "submit": 'button[type="submit"]',
    }
    logged_in_selector = 'a:has-text("Logout")'
    sunet_link = 'a:has-text("SUNet ID")'

    post_job_link = 'a:has-text("Post a Job")'
    field_selectors = {
        "title": 'input[name="jobTitle"]',
        "description": 'textarea[name="description"]',
        "location": 'input[name="location"]',
        "department": 'select[name="department"]',
        "salary_min": 'input[name="minSalary"]',
        "salary_max": 'input[name="maxSalary"]',
        "employment_type": 'select[name="jobType"]',
        "contact_email": 'input[name="contactEmail"]',
    }
    employment_types = {
        "full-time": "Full Time",
        "part-time": "Part Time",
        "contract": "Fixed Term",
        "internship": "Student",
    }
    required_fields = ("title", "description", "location", "contact_email")

    submit_selector = 'button:has-text("Submit Job")'
    success_selectors = [".alert-success", ".confirmation-number"]
    error_selectors = [".field-error", ".error-message"]

    async def open_login_form(self, session):
        if await session.exists(self.sunet_link):
            await session.click(self.sunet_link)

    async def after_fill(self, session, job: Job):
        await fill_if_present(session, 'input[name="reqNumber"]', f"EXT-{int(time.time() * 1000)}")
