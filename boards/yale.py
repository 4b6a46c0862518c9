"""
Yale University Office of Career Strategy board.

The employer login sits behind an "Employer Login" link and may redirect to
CAS. When no login form is shown the posting form is public.
"""

from core.models import Job

from .base import BoardStrategy, LoginFlow, days_from_now, fill_if_present

QUALIFICATIONS = (
    "• Bachelor's degree or equivalent experience\n"
    "• Strong communication and analytical skills\n"
    "• Ability to work independently and as part of a team"
)


class YaleStrategy(BoardStrategy):
    name = "Yale University"
    login_flow = LoginFlow.CREDENTIALS
    login_url = "https://ocs.yale.edu"
    login_optional = True

    login_selectors = {
        "username": "#username, #netid",
        "password": "#password",
        "submit": 'input[type="submit"], button:has-text("Login")',
    }
    login_error_selector = ".error, .alert"
    employer_link = 'a:has-text("Employer Login")'

    post_job_link = 'a:has-text("Post a Position")'
    field_selectors = {
        "title": 'input[name="title"], #jobTitle',
        "description": 'textarea[name="description"], #jobDescription',
        "location": 'input[name="location"], #location',
        "company": 'input[name="organization"], #companyName',
        "department": 'input[name="department"]',
        "salary_min": 'input[name="salaryMin"]',
        "salary_max": 'input[name="salaryMax"]',
        "employment_type": 'select[name="type"], #jobType',
        "contact_email": 'input[name="email"], #contactEmail',
    }
    employment_types = {
        "full-time": "Full-Time",
        "part-time": "Part-Time",
        "internship": "Internship",
        "contract": "Contract/Temporary",
    }
    required_fields = ("title", "description", "location", "company", "contact_email")

    submit_selector = 'button:has-text("Submit"), input[value="Submit"]'
    success_selectors = [
        ".message-success, .confirmation",
        ".reference-number",
        "text=/successfully submitted/i",
        "text=/received your posting/i",
    ]
    error_selectors = [".error-message", ".field-error", ".alert-error"]

    async def open_login_form(self, session):
        if await session.exists(self.employer_link):
            await session.click(self.employer_link)

    async def after_fill(self, session, job: Job):
        await fill_if_present(session, 'input[name="contactName"]', "Hiring Manager")
        await fill_if_present(session, 'input[name="targetSchools"]', "All Schools")
        await fill_if_present(session, 'input[name="deadline"]', days_from_now(30))
        await fill_if_present(session, 'input[name="startDate"]', days_from_now(45))
        await fill_if_present(session, 'textarea[name="qualifications"]', QUALIFICATIONS)
