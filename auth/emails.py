# auth/emails.py
"""
Account email templates.
"""

from __future__ import annotations

import html
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class EmailContent:
    subject: str
    html: str
    text: Optional[str] = None


WELCOME_TEMPLATE = """\
<html><body>
<h2>Welcome, {name}!</h2>
<p>Your {app_name} account has been created with the email <b>{email}</b>.</p>
<p>Verify your email address from your account page to unlock everything.</p>
</body></html>
"""

VERIFY_TEMPLATE = """\
<html><body>
<h2>Verify your email</h2>
<p>You are just one step away from verifying your account for <b>{email}</b>.</p>
<p>Use this code to verify your account:</p>
<p style="font-size:22px;letter-spacing:4px"><b>{otp}</b></p>
<p>This code is valid for 24 hours.</p>
</body></html>
"""

RESET_TEMPLATE = """\
<html><body>
<h2>Password reset request</h2>
<p>We received a password reset request for your account <b>{email}</b>.</p>
<p>Use this code to reset your password:</p>
<p style="font-size:22px;letter-spacing:4px"><b>{otp}</b></p>
<p>This code is valid for 15 minutes. If you did not ask for it, ignore this email.</p>
</body></html>
"""


def welcome_email(app_name: str, name: str, email: str) -> EmailContent:
    return EmailContent(
        subject=f"Welcome to {app_name}",
        html=WELCOME_TEMPLATE.format(
            app_name=html.escape(app_name),
            name=html.escape(name),
            email=html.escape(email),
        ),
        text=f"Welcome to {app_name}! Your account has been created with email: {email}",
    )


def verify_otp_email(app_name: str, email: str, otp: str) -> EmailContent:
    return EmailContent(
        subject="Account Verification OTP",
        html=VERIFY_TEMPLATE.format(email=html.escape(email), otp=otp),
        text=f"Your {app_name} verification code is {otp}. It will expire in 24 hours.",
    )


def reset_otp_email(app_name: str, email: str, otp: str, resend: bool = False) -> EmailContent:
    subject = "Password Reset OTP (Resent)" if resend else "Password Reset OTP"
    return EmailContent(
        subject=subject,
        html=RESET_TEMPLATE.format(email=html.escape(email), otp=otp),
        text=f"Your {app_name} password reset code is {otp}. It will expire in 15 minutes.",
    )
