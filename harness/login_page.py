"""
Page object for the Salesforce login and verification screens.
"""
from playwright.sync_api import Page, TimeoutError as PlaywrightTimeoutError


HOME_ROUTE = '/lightning/page/home'


class LoginPage:
    """
    Salesforce login page.

    Wraps the locators the login flow touches: credentials form,
    verification code form, profile menu and the login error banner.
    """

    def __init__(self, page: Page, base_url: str = ''):
        self.page = page
        self.base_url = base_url.rstrip('/')
        self.username_input = page.get_by_role('textbox', name='Username')
        self.password_input = page.get_by_role('textbox', name='Password')
        self.login_button = page.get_by_role('button', name='Log In')
        self.otp_text_box = page.get_by_role('textbox', name='Verification Code')
        self.verify_button = page.get_by_role('button', name='Verify')
        self.profile_button = page.get_by_role('button', name='View profile')
        self.logout_link = page.get_by_role('link', name='Log Out')
        self.login_error_text = page.get_by_text('Error: Please check your')

    def open(self) -> None:
        self.page.goto(self.base_url or '/', wait_until='domcontentloaded')

    def go_home(self) -> None:
        self.page.goto(f"{self.base_url}{HOME_ROUTE}", wait_until='domcontentloaded')

    def current_url(self) -> str:
        return self.page.url

    def submit_credentials(self, username: str, password: str) -> None:
        self.username_input.fill(username)
        self.password_input.fill(password)
        self.login_button.click()

    def has_credential_error(self) -> bool:
        return self.login_error_text.is_visible()

    def get_login_error(self) -> str:
        return self.login_error_text.inner_text()

    def has_otp_challenge(self, timeout: float = 5.0) -> bool:
        """Wait briefly for the verification code box; False if it never shows."""
        try:
            self.otp_text_box.wait_for(state='visible', timeout=timeout * 1000)
            return True
        except PlaywrightTimeoutError:
            return False

    def submit_otp(self, otp: str) -> None:
        self.otp_text_box.fill(otp)
        self.verify_button.click()

    def is_authenticated(self, timeout: float = 5.0) -> bool:
        """True once the profile button is visible."""
        try:
            self.profile_button.wait_for(state='visible', timeout=timeout * 1000)
            return True
        except PlaywrightTimeoutError:
            return False

    def clear_session_state(self) -> None:
        """Drop cookies and local storage left over from a previous login."""
        self.page.context.clear_cookies()
        try:
            self.page.evaluate('() => { try { localStorage.clear(); sessionStorage.clear(); } catch (e) {} }')
        except Exception as e:
            print(f"[LoginPage] Could not clear storage on {self.page.url}: {e}")

    def logout(self) -> None:
        self.profile_button.click()
        self.logout_link.click()
