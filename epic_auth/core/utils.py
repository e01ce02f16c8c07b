"""
This module contains miscellaneous utilities: validators for user input
(username, email, password), generators for identifiers and timestamps, the
HTML template renderer used by the emails, and helpers to describe the
client that sent a request (device, browser, location).
"""
from datetime import datetime, timezone
import os
import re
import time
import uuid
from email_validator import EmailNotValidError
from email_validator import validate_email as email_validation
from fastapi import HTTPException, Request
from fastapi.routing import APIRoute
import httpx
from jinja2 import DebugUndefined, Template

from epic_auth.core.config import logger, settings


def validate_username(username: str) -> str:
    """
    Validates the provided username.

    :param str username: The username to validate.
    :return str: The validated username.
    :raises HTTPException: If the username is invalid.
    """
    username_pattern = r"^[a-zA-Z0-9_]{3,20}$"
    if bool(re.match(username_pattern, username)):
        return username.lower()
    raise HTTPException(
        status_code=400,
        detail="Username must be 3 to 20 characters long and contain only letters, numbers, and underscores."
    )


def validate_email(email: str, raise_error: bool = True, check_deliverability: bool = False) -> str | bool:
    """
    Validates the provided email address.

    :param str email: The email address to validate.
    :param bool raise_error: Return False instead of raising when the email is invalid.
    :param bool check_deliverability: Whether to check the domain with a DNS query.
    :return str: The normalized email address.
    :raises HTTPException: If the email address is invalid.
    """
    try:
        email_info = email_validation(
            email, check_deliverability=check_deliverability)
    except EmailNotValidError as e:
        if not raise_error:
            logger.debug(f"Invalid email format: {email}")
            return False
        raise HTTPException(
            status_code=400, detail="Email is not valid. " + str(e)) from e
    return email_info.normalized.lower()


def validate_password(password: str) -> str:
    """
    Validates the provided password.

    :param str password: The password to validate.
    :return str: The validated password.
    :raises HTTPException: If the password is invalid.
    """
    if 6 <= len(password) <= 100:
        return password
    if settings.ENVIRONMENT == "local":
        logger.warning("Invalid password length")
        return password
    raise HTTPException(
        status_code=400,
        detail="Password must be between 6 and 100 characters long."
    )


# ----- GENERATORS ----- #


def generate_uuid() -> str:
    """
    Generates a random UUID.

    :return: A random UUID.
    """
    return str(uuid.uuid4())


def generate_timestamp() -> int:
    """
    Generates a timestamp representing the current time.

    :return: An integer timestamp.
    """
    return int(time.time())


def custom_generate_unique_id(route: APIRoute) -> str:
    """Generate a unique ID for a route by combining its first tag with its name."""
    return f"{route.tags[0]}-{route.name}"


def render_html_template(html_content: str, context: dict = None) -> str:
    """
    Renders an HTML template with the given content and context.

    :param str html_content: The HTML content to be rendered.
    :param dict context: A dictionary of context variables to be used in rendering the template.
    :return str: The rendered HTML as a string.
    """
    base_context = {
        "PROJECT_NAME": settings.PROJECT_NAME,
        "FRONTEND_URL": settings.FRONTEND_URL,
        "COPYRIGHT_YEAR": datetime.now(timezone.utc).year,
        "SUPPORT_EMAIL": settings.CONTACT_EMAIL,
        "BASE_URL": settings.BASE_URL,
        "API_STR": settings.API_STR,
    }
    base_context.update(context or {})
    return Template(
        html_content, undefined=DebugUndefined).render(base_context)


def app_path(path: str) -> str:
    """Returns the absolute path of the given path relative to the app root directory."""
    return os.path.normpath(os.path.join(settings.APP_ROOT_DIR, path))


def read_html_template(name: str) -> str:
    """Returns the raw content of an HTML template of `epic_auth/templates/html`."""
    with open(app_path(os.path.join("epic_auth", "templates", "html", name)), "r", encoding="utf-8") as f:
        return f.read()


# ----- REQUEST INFO ----- #


def extract_info(user_agent: str):
    """
    Extracts OS and browser information from the given user agent string.

    :param str user_agent: The user agent string to parse.
    :return tuple: A tuple containing the OS information and browser information as strings.
    """
    os_info = "Unknown OS"
    browser_info = "Unknown Browser"

    os_match = re.search(r'\((.*?)\)', user_agent)
    if os_match:
        os_info = os_match.group(1)

    if "Firefox" in user_agent:
        browser_info = "Firefox"
    elif "Safari" in user_agent and "Chrome" not in user_agent:
        browser_info = "Safari"
    elif "Chrome" in user_agent and "Safari" in user_agent:
        browser_info = "Chrome"
        if "Edg" in user_agent:
            browser_info = "Edge"
        elif "OPR" in user_agent:
            browser_info = "Opera"

    return os_info, browser_info


def get_location_from_ip(ip_address: str) -> dict | None:
    """
    Gets the location information from an IP address using the ipinfo.io API.

    :param str ip_address: The IP address to lookup.
    :return dict: A dictionary containing the location information. None if the lookup fails.
    """
    try:
        response = httpx.get(f"http://ipinfo.io/{ip_address}/json", timeout=5)
    except httpx.HTTPError as e:
        logger.debug(f"IP lookup failed for {ip_address}: {e}")
        return None
    if response.status_code != 200:
        return None
    data = response.json()
    if data.get("bogon"):
        return None
    return data


def get_info_from_request(request: Request = None) -> dict:
    """
    Gets the location, device type, browser type and IP address from the given request.

    :param Request request: The request object to extract the information from. Defaults to None.
    :return dict: The location, device, browser and IP address as strings.
    """
    if not request or not request.client:
        return {
            "location": "Unknown Location",
            "device": "Unknown OS",
            "browser": "Unknown Browser",
            "ip_address": "Unknown IP"
        }
    device, browser = extract_info(request.headers.get("User-Agent", ""))
    location = "Unknown Location"
    client_host = request.client.host
    if client_host.startswith("127.") or client_host in ("localhost", "testclient"):
        location = "Loopback (localhost)"
    elif client_host.startswith("10.") or client_host.startswith("192.168."):
        location = "Private network"
    else:
        data = get_location_from_ip(client_host)
        if data:
            location = f"{data.get('city')}, {data.get('region')}, {data.get('country')}"
    return {
        "location": location,
        "device": device,
        "browser": browser,
        "ip_address": client_host
    }
