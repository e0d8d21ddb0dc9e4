"""
Email Notification Service

Sends the contract signing emails: magic links, verification codes and
signed/declined notices. Every public method returns True/False and never
raises, so a mail outage cannot affect the contract lifecycle.
"""

import logging
from datetime import datetime
from typing import List, Optional

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.utils.html import escape, strip_tags

logger = logging.getLogger(__name__)


class EmailService:
    """
    Service for sending contract notification emails
    """

    def __init__(self):
        self.sender_email = (
            (getattr(settings, 'DEFAULT_FROM_EMAIL', '') or '').strip()
            or 'noreply@example.com'
        )
        self.studio_name = (getattr(settings, 'STUDIO_NAME', '') or '').strip() or 'Studio'

    def send_signing_link_email(
        self,
        *,
        recipient_email: str,
        recipient_name: str,
        contract_title: str,
        contract_number: str,
        signing_url: str,
        expires_at_iso: str | None = None,
        is_reminder: bool = False,
    ) -> bool:
        """Send the magic signing link for a contract."""
        try:
            prefix = 'Reminder: ' if is_reminder else ''
            subject = f"{prefix}Please review and sign {contract_title} ({contract_number})"
            html_body = self._get_signing_link_template(
                recipient_name=recipient_name,
                contract_title=contract_title,
                contract_number=contract_number,
                signing_url=signing_url,
                expires_at_iso=expires_at_iso,
            )
            return self._send_email(
                recipient_email=recipient_email,
                subject=subject,
                html_body=html_body,
                notification_type='contract_signing_link',
            )
        except Exception as e:
            logger.error(f"Failed to send signing link email: {str(e)}")
            return False

    def send_signing_otp_email(
        self,
        *,
        recipient_email: str,
        recipient_name: str,
        contract_title: str,
        otp: str,
    ) -> bool:
        """Send the verification code separately from the link."""
        try:
            subject = f"Your verification code for {contract_title}"
            html_body = self._get_otp_template(
                recipient_name=recipient_name,
                contract_title=contract_title,
                otp=otp,
            )
            return self._send_email(
                recipient_email=recipient_email,
                subject=subject,
                html_body=html_body,
                notification_type='contract_signing_otp',
            )
        except Exception as e:
            logger.error(f"Failed to send signing OTP email: {str(e)}")
            return False

    def send_contract_outcome_email(
        self,
        *,
        recipient_emails: List[str],
        contract_title: str,
        contract_number: str,
        outcome: str,
        reason: str | None = None,
    ) -> bool:
        """Tell the studio (and the client, for signatures) how the contract ended."""
        recipients = [e for e in recipient_emails if e]
        if not recipients:
            logger.info(f"No recipients for {outcome} notice on {contract_number}")
            return True
        try:
            subject = f"Contract {contract_number} {outcome}: {contract_title}"
            html_body = self._get_outcome_template(
                contract_title=contract_title,
                contract_number=contract_number,
                outcome=outcome,
                reason=reason,
            )
            sent = True
            for recipient in recipients:
                sent = self._send_email(
                    recipient_email=recipient,
                    subject=subject,
                    html_body=html_body,
                    notification_type=f'contract_{outcome}',
                ) and sent
            return sent
        except Exception as e:
            logger.error(f"Failed to send contract outcome email: {str(e)}")
            return False

    def _send_email(
        self,
        recipient_email: str,
        subject: str,
        html_body: str,
        notification_type: str = 'general',
    ) -> bool:
        """
        Internal method to send email through Django's configured backend

        Args:
            recipient_email: Recipient's email address
            subject: Email subject
            html_body: HTML email body
            notification_type: Type of notification

        Returns:
            True if sent successfully
        """
        try:
            msg = EmailMultiAlternatives(
                subject=subject,
                body=strip_tags(html_body).strip(),
                from_email=self.sender_email,
                to=[recipient_email],
                headers={
                    'X-Notification-Type': notification_type,
                    'X-Timestamp': datetime.now().isoformat(),
                },
            )
            msg.attach_alternative(html_body, 'text/html')
            msg.send(fail_silently=False)

            logger.info(f"Email sent successfully to {recipient_email} ({notification_type})")
            return True
        except Exception as e:
            logger.error(f"Failed to send email: {str(e)}")
            return False

    def _wrap(self, *, title: str, header_gradient: str, body: str) -> str:
        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset=\"UTF-8\">
            <style>
                body {{ font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif; line-height: 1.6; color: #111; }}
                .container {{ max-width: 640px; margin: 0 auto; background-color: #f5f5f5; padding: 22px; border-radius: 10px; }}
                .header {{ background: {header_gradient}; color: white; padding: 20px; border-radius: 10px 10px 0 0; }}
                .header h1 {{ margin: 0; font-size: 20px; }}
                .content {{ background-color: white; padding: 26px; border-radius: 0 0 10px 10px; }}
                .card {{ background: #f9fafb; border: 1px solid #e5e7eb; border-radius: 10px; padding: 14px 16px; margin: 14px 0; }}
                .btn {{ display: inline-block; padding: 12px 18px; background: #4f46e5; color: white; text-decoration: none; border-radius: 8px; font-weight: 600; }}
                .code {{ font-size: 28px; letter-spacing: 6px; font-weight: 700; }}
                .muted {{ color: #6b7280; font-size: 12px; }}
            </style>
        </head>
        <body>
            <div class=\"container\">
                <div class=\"header\">
                    <h1>{escape(title)}</h1>
                </div>
                <div class=\"content\">
                    {body}
                    <p class=\"muted\">Sent by {escape(self.studio_name)}. This is an automated message. Please do not reply.</p>
                </div>
            </div>
        </body>
        </html>
        """

    def _get_signing_link_template(
        self,
        *,
        recipient_name: str,
        contract_title: str,
        contract_number: str,
        signing_url: str,
        expires_at_iso: Optional[str],
    ) -> str:
        expires_line = (
            f"<p style=\"margin: 6px 0; color: #555;\"><strong>Link expires:</strong> {escape(expires_at_iso)}</p>"
            if expires_at_iso
            else ""
        )
        body = f"""
                    <p>Hi <strong>{escape(recipient_name)}</strong>,</p>
                    <p>Your contract is ready for review and signature:</p>
                    <div class=\"card\">
                        <p style=\"margin: 6px 0;\"><strong>Contract:</strong> {escape(contract_title)}</p>
                        <p style=\"margin: 6px 0;\"><strong>Number:</strong> {escape(contract_number)}</p>
                        {expires_line}
                    </div>
                    <p style=\"margin: 18px 0;\">
                        <a class=\"btn\" href=\"{escape(signing_url)}\">Review & Sign</a>
                    </p>
                    <p class=\"muted\">If the button doesn't work, paste this URL into your browser: {escape(signing_url)}</p>
                    <p class=\"muted\">This link can be used once. Do not forward it.</p>
        """
        return self._wrap(
            title='Signature requested',
            header_gradient='linear-gradient(135deg, #111827 0%, #4f46e5 100%)',
            body=body,
        )

    def _get_otp_template(self, *, recipient_name: str, contract_title: str, otp: str) -> str:
        body = f"""
                    <p>Hi <strong>{escape(recipient_name)}</strong>,</p>
                    <p>Use this code to confirm your signature on <strong>{escape(contract_title)}</strong>:</p>
                    <div class=\"card\"><p class=\"code\">{escape(otp)}</p></div>
                    <p class=\"muted\">If you did not request this, ignore this email.</p>
        """
        return self._wrap(
            title='Verification code',
            header_gradient='linear-gradient(135deg, #111827 0%, #0ea5e9 100%)',
            body=body,
        )

    def _get_outcome_template(
        self,
        *,
        contract_title: str,
        contract_number: str,
        outcome: str,
        reason: Optional[str],
    ) -> str:
        reason_line = (
            f"<p style=\"margin: 6px 0; color: #555;\"><strong>Reason:</strong> {escape(reason)}</p>"
            if reason
            else ""
        )
        body = f"""
                    <p>The contract below has been <strong>{escape(outcome)}</strong>.</p>
                    <div class=\"card\">
                        <p style=\"margin: 6px 0;\"><strong>Contract:</strong> {escape(contract_title)}</p>
                        <p style=\"margin: 6px 0;\"><strong>Number:</strong> {escape(contract_number)}</p>
                        {reason_line}
                    </div>
        """
        gradient = (
            'linear-gradient(135deg, #16a34a 0%, #059669 100%)'
            if outcome == 'signed'
            else 'linear-gradient(135deg, #b91c1c 0%, #ea580c 100%)'
        )
        return self._wrap(title=f'Contract {outcome}', header_gradient=gradient, body=body)
