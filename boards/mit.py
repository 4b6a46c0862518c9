"""
MIT careers board.

Employers sign in with an email account when the portal asks for it.
"""

from core.models import Job

from .base import BoardStrategy, LoginFlow, days_from_now, fill_if_present


class MITStrategy(BoardStrategy):
    name = "MIT"
    login_flow = LoginFlow.CREDENTIALS
    login_url = "https://careers.mit.edu"
    login_optional = True

    login_selectors = {
        "username": 'input[name="email"]',
        "password": 'input[name="password"]',
        "submit": 'button[type="submit"]:has-text("Sign In")',
    }
    logged_in_selector = '[aria-label="User menu"], .user-menu'
    employer_link = 'a:has-text("Employers"), a:has-text("Post Jobs")'

    post_job_link = 'a:has-text("Post a Job")'
    field_selectors = {
        "title": "#job_title",
        "description": "#job_description",
        "location": "#job_location",
        "department": "#department",
        "salary_min": "#salary_min",
        "salary_max": "#salary_max",
        "employment_type": 'select[name="employment_type"]',
        "contact_email": "#contact_email",
    }
    employment_types = {
        "full-time": "Full-Time",
        "part-time": "Part-Time",
        "contract": "Contract",
        "internship": "Internship",
        "temporary": "Temporary",
    }
    required_fields = ("title", "description", "location", "contact_email")

    submit_selector = 'button:has-text("Submit Job Posting")'
    preview_selector = 'button:has-text("Preview")'
    confirm_selector = 'button:has-text("Confirm")'
    success_selectors = [
        ".success-message, .alert-success",
        ".job-id, .posting-reference",
        "text=/successfully posted/i",
        "text=/posting confirmed/i",
    ]
    reference_selector = ".job-id, .posting-reference"

    async def open_login_form(self, session):
        if await session.exists(self.employer_link):
            await session.click(self.employer_link)

    async def after_fill(self, session, job: Job):
        await fill_if_present(session, "#application_url", f"mailto:{job.contact_email}")
        await fill_if_present(session, 'select[name="experience_level"]', "Entry Level")
        await fill_if_present(session, 'input[name="application_deadline"]', days_from_now(30))
