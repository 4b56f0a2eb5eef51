"""
Notification service for ticket and payment confirmation emails.
"""

import logging
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from ..config import get_settings
from ..models.payment import Payment
from ..models.ticket import Ticket
from ..utils.exceptions import EmailServiceError

logger = logging.getLogger(__name__)

DATE_FORMAT = "%A, %B %d, %Y"
TIME_FORMAT = "%I:%M %p"


class NotificationService:
    """Service for handling email notifications."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.settings = get_settings()

    async def send_ticket_confirmation(self, ticket_id: UUID) -> bool:
        """
        Send the ticket to the passenger.

        Args:
            ticket_id: ID of the completed ticket

        Returns:
            bool: True if email was sent

        Raises:
            EmailServiceError: SMTP delivery failed and may be retried
        """
        ticket = await self._get_ticket_with_details(ticket_id)
        if not ticket:
            logger.error(f"Ticket {ticket_id} not found")
            return False

        recipient = self._recipient_for(ticket)
        if not recipient:
            logger.warning(f"Ticket {ticket.ticket_number} has no email address; skipping confirmation")
            return False

        data = self._ticket_template_data(ticket)
        sent = await self._send_email(
            to_email=recipient,
            subject=f"Bus Ticket Confirmation - {ticket.ticket_number}",
            html_content=self._render_ticket_template(data),
            text_content=self._render_ticket_text(data),
        )
        if sent:
            logger.info(f"Ticket confirmation sent for ticket {ticket.ticket_number}")
        return sent

    async def send_payment_confirmation(self, payment_id: UUID) -> bool:
        """
        Send the payment receipt for a completed payment.

        Raises:
            EmailServiceError: SMTP delivery failed and may be retried
        """
        payment = await self._get_payment_with_details(payment_id)
        if not payment:
            logger.error(f"Payment {payment_id} not found")
            return False

        ticket = payment.ticket
        recipient = self._recipient_for(ticket)
        if not recipient:
            logger.warning(f"Payment {payment.reference} has no email address; skipping receipt")
            return False

        data = self._ticket_template_data(ticket)
        data.update({
            "payment_reference": payment.reference,
            "payment_amount": f"${payment.amount:.2f}",
            "payment_method": payment.payment_method.upper(),
            "paid_at": (payment.completed_at or datetime.utcnow()).strftime(f"{DATE_FORMAT} at {TIME_FORMAT}"),
        })

        sent = await self._send_email(
            to_email=recipient,
            subject=f"Payment Confirmed - Ticket {ticket.ticket_number}",
            html_content=self._render_payment_template(data),
            text_content=self._render_payment_text(data),
        )
        if sent:
            logger.info(f"Payment confirmation sent for payment {payment.reference}")
        return sent

    async def _send_email(self, to_email: str, subject: str, html_content: str, text_content: str) -> bool:
        """
        Send email using SMTP.

        Returns:
            bool: True if sent, False when SMTP is not configured
        """
        if not self.settings.smtp_server or not self.settings.smtp_username:
            logger.warning("Email configuration not available, skipping email send")
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.settings.mail_from
        msg["To"] = to_email

        msg.attach(MIMEText(text_content, "plain"))
        msg.attach(MIMEText(html_content, "html"))

        try:
            with smtplib.SMTP(self.settings.smtp_server, self.settings.smtp_port) as server:
                if self.settings.smtp_use_tls:
                    server.starttls()

                server.login(self.settings.smtp_username, self.settings.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise EmailServiceError(str(e), details={"subject": subject}) from e

        logger.info(f"Email sent successfully to {to_email}")
        return True

    def _recipient_for(self, ticket: Ticket) -> Optional[str]:
        return ticket.passenger_email or (ticket.user.email if ticket.user else None)

    async def _get_ticket_with_details(self, ticket_id: UUID) -> Optional[Ticket]:
        result = await self.session.execute(
            select(Ticket)
            .options(joinedload(Ticket.bus), joinedload(Ticket.user))
            .where(Ticket.id == ticket_id)
        )
        return result.scalar_one_or_none()

    async def _get_payment_with_details(self, payment_id: UUID) -> Optional[Payment]:
        result = await self.session.execute(
            select(Payment)
            .options(
                joinedload(Payment.ticket).joinedload(Ticket.bus),
                joinedload(Payment.ticket).joinedload(Ticket.user),
            )
            .where(Payment.id == payment_id)
        )
        return result.scalar_one_or_none()

    def _ticket_template_data(self, ticket: Ticket) -> Dict[str, str]:
        bus = ticket.bus
        return {
            "passenger_name": ticket.passenger_name,
            "ticket_number": ticket.ticket_number,
            "departure": ticket.departure,
            "destination": ticket.destination,
            "travel_date": ticket.travel_date.strftime(DATE_FORMAT),
            "departure_time": bus.departure_time.strftime(TIME_FORMAT) if bus else "N/A",
            "seat_number": str(ticket.seat_number),
            "fleet_number": bus.fleet_number if bus else "N/A",
            "bus_type": bus.bus_type if bus else "N/A",
            "amount": f"${ticket.amount:.2f}",
        }

    def _render_ticket_template(self, data: Dict) -> str:
        """Render HTML template for the ticket confirmation."""
        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="utf-8">
            <title>Bus Ticket Confirmation</title>
            <style>
                body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
                .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
                .header {{ background-color: #0ea5e9; color: white; padding: 20px; text-align: center; }}
                .content {{ padding: 20px; background-color: #f9f9f9; }}
                .ticket-details {{ background-color: white; padding: 15px; margin: 15px 0; border-radius: 5px; }}
                .footer {{ text-align: center; padding: 20px; color: #666; }}
            </style>
        </head>
        <body>
            <div class="container">
                <div class="header">
                    <h1>Your Bus Ticket</h1>
                </div>
                <div class="content">
                    <p>Dear {data['passenger_name']},</p>
                    <p>Your seat is confirmed. Here are your ticket details:</p>

                    <div class="ticket-details">
                        <p><strong>Ticket Number:</strong> {data['ticket_number']}</p>
                        <p><strong>Route:</strong> {data['departure']} &rarr; {data['destination']}</p>
                        <p><strong>Travel Date:</strong> {data['travel_date']}</p>
                        <p><strong>Departure Time:</strong> {data['departure_time']}</p>
                        <p><strong>Seat Number:</strong> {data['seat_number']}</p>
                        <p><strong>Bus Fleet:</strong> {data['fleet_number']} ({data['bus_type']})</p>
                        <p><strong>Amount:</strong> {data['amount']}</p>
                    </div>

                    <p>Please arrive at least 30 minutes before departure and present this ticket at boarding.</p>
                </div>
                <div class="footer">
                    <p>Safe travels!</p>
                </div>
            </div>
        </body>
        </html>
        """

    def _render_ticket_text(self, data: Dict) -> str:
        """Render plain text template for the ticket confirmation."""
        return f"""
        BUS TICKET CONFIRMATION

        Dear {data['passenger_name']},

        Ticket Number: {data['ticket_number']}
        Route: {data['departure']} to {data['destination']}
        Travel Date: {data['travel_date']}
        Departure Time: {data['departure_time']}
        Seat Number: {data['seat_number']}
        Bus Fleet: {data['fleet_number']} ({data['bus_type']})
        Amount: {data['amount']}

        Please arrive at least 30 minutes before departure and present this ticket at boarding.

        Safe travels!
        """

    def _render_payment_template(self, data: Dict) -> str:
        """Render HTML template for the payment receipt."""
        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="utf-8">
            <title>Payment Confirmed</title>
            <style>
                body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
                .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
                .header {{ background-color: #10b981; color: white; padding: 20px; text-align: center; }}
                .content {{ padding: 20px; background-color: #f9f9f9; }}
                .payment-details {{ background-color: white; padding: 15px; margin: 15px 0; border-radius: 5px; }}
            </style>
        </head>
        <body>
            <div class="container">
                <div class="header">
                    <h1>Payment Confirmed</h1>
                    <p>Your payment was successful</p>
                </div>
                <div class="content">
                    <div class="payment-details">
                        <p><strong>Payment Reference:</strong> {data['payment_reference']}</p>
                        <p><strong>Amount Paid:</strong> {data['payment_amount']}</p>
                        <p><strong>Payment Method:</strong> {data['payment_method']}</p>
                        <p><strong>Paid:</strong> {data['paid_at']}</p>
                        <p><strong>Ticket Number:</strong> {data['ticket_number']}</p>
                        <p><strong>Route:</strong> {data['departure']} &rarr; {data['destination']}</p>
                    </div>
                </div>
            </div>
        </body>
        </html>
        """

    def _render_payment_text(self, data: Dict) -> str:
        """Render plain text template for the payment receipt."""
        return f"""
        PAYMENT CONFIRMED

        Payment Reference: {data['payment_reference']}
        Amount Paid: {data['payment_amount']}
        Payment Method: {data['payment_method']}
        Paid: {data['paid_at']}
        Ticket Number: {data['ticket_number']}
        Route: {data['departure']} to {data['destination']}
        """
