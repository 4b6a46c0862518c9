"""
Harvard University board (BrassRing talent gateway).

Login is only needed when the gateway shows its login form.
"""

from typing import Optional

from core.models import Board

from .base import BoardStrategy, LoginFlow

GATEWAY_URL = "https://sjobs.brassring.com/TGnewUI/Search/Home/Home?partnerid=25240&siteid=5341"


class HarvardStrategy(BoardStrategy):
    name = "Harvard University"
    login_flow = LoginFlow.CREDENTIALS
    login_url = GATEWAY_URL
    login_optional = True

    login_selectors = {
        "username": "#username",
        "password": "#password",
        "submit": "#loginButton",
    }
    login_error_selector = ".login-error"

    post_job_link = 'a[href*="submitCareer"]'
    field_selectors = {
        "title": "#jobTitle",
        "description": "#jobDescription",
        "location": "#jobLocation",
        "department": "#department",
        "salary_min": "#salaryRangeMin",
        "salary_max": "#salaryRangeMax",
        "employment_type": "#employmentType",
        "contact_email": "#contactEmail",
    }
    required_fields = ("title", "description", "location")

    submit_selector = "#submitJobButton"
    success_selectors = [
        ".submission-success",
        ".job-reference-number",
        "text=/successfully posted/i",
        "text=/submission complete/i",
    ]
    reference_selector = ".job-reference-number"

    async def extract_reference(self, session, board: Board) -> Optional[str]:
        text = await session.text_content(self.reference_selector)
        if text and text.strip():
            return f"{GATEWAY_URL}#jobDetails={text.strip()}"
        return None
