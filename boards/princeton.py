"""
Princeton University board, hosted on Handshake.

Handshake splits the posting form over several steps separated by
"Continue" buttons and puts a preview page in front of the final submit.
"""

from typing import Optional
from urllib.parse import quote, urljoin

from core.errors import AutomationError
from core.models import Board, Job

from .base import BoardStrategy, LoginFlow, click_if_present, days_from_now, fill_if_present, safe_fill


class PrincetonStrategy(BoardStrategy):
    name = "Princeton University"
    login_flow = LoginFlow.CREDENTIALS
    login_url = "https://princeton.joinhandshake.com/employers"

    login_selectors = {
        "username": 'input[name="email"], #email',
        "password": 'input[name="password"], #password',
        "submit": 'button[type="submit"]',
    }
    logged_in_selector = 'a:has-text("Post a Job")'

    post_job_link = 'a:has-text("Post a Job"), button:has-text("Post Job")'
    continue_button = 'button:has-text("Continue")'
    field_selectors = {
        "title": 'input[name="title"]',
        "description": 'textarea[name="description"]',
        "employment_type": 'select[name="job_type"]',
        "location": 'input[name="location"]',
        "salary_min": 'input[name="salary_min"]',
        "salary_max": 'input[name="salary_max"]',
        "contact_email": 'input[name="apply_email"]',
    }
    employment_types = {
        "full-time": "Full-Time",
        "part-time": "Part-Time",
        "internship": "Internship",
        "contract": "Temporary/Contract",
        "volunteer": "Volunteer",
    }
    # Keys that start a new step of the form
    step_breaks = ("location", "contact_email")

    submit_selector = 'button:has-text("Post Job"), button:has-text("Submit")'
    preview_selector = 'button:has-text("Preview")'
    confirm_selector = 'button:has-text("Post"), button:has-text("Confirm")'
    success_selectors = [
        '.success-message, [role="alert"]:has-text("success")',
        "text=/successfully posted/i",
        "text=/job has been posted/i",
        "text=/posting is now live/i",
    ]
    error_selectors = [".error", ".alert-danger", '[role="alert"]:has-text("error")']
    job_link = 'a[href*="/jobs/"]'

    async def fill_form(self, session, job: Job, board: Board):
        if self.post_job_link:
            await click_if_present(session, self.post_job_link, settle=self.settle_delay)

        values = self.field_values(job)
        for key, selector in self.selectors_for(board).items():
            value = values.get(key)
            if not value:
                continue
            if key in self.step_breaks:
                await click_if_present(session, self.continue_button, settle=self.settle_delay)
            if not await safe_fill(session, selector, value, timeout=self.element_timeout):
                if key in self.required_fields:
                    raise AutomationError(f"{self.name}: could not fill required field '{key}'")

        await self.after_fill(session, job)

    async def after_fill(self, session, job: Job):
        await fill_if_present(session, 'select[name="experience_level"]', "Entry Level")
        await fill_if_present(session, 'select[name="remote_option"]', "On-Site")
        await fill_if_present(
            session,
            'input[name="apply_url"]',
            f"mailto:{job.contact_email}?subject={quote(job.title)}",
        )
        await fill_if_present(session, 'input[name="expiration_date"]', days_from_now(30))

    async def extract_reference(self, session, board: Board) -> Optional[str]:
        if not await session.exists(self.job_link):
            return None
        href = await session.get_attribute(self.job_link, "href")
        if not href:
            return None
        return urljoin(session.url, href)
