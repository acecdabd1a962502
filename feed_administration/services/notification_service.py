"""
Feed Administration Notification Service

Email notifications for the feed administration workflow:
- Review request to the farmer's assigned veterinarian
- Prescription (with PDF) to the farmer on approval
- Rejection notice to the farmer
- Withdrawal-ended and expiring-feed reminder bodies (sent via core.tasks)

``send_email`` never raises; it reports {'success': bool, 'error': str|None}.
"""

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
import logging

from feed_inventory.exceptions import format_quantity

logger = logging.getLogger(__name__)


class FeedAdministrationNotificationService:
    """Service for sending feed administration emails"""

    def __init__(self):
        self.from_email = getattr(settings, 'DEFAULT_FROM_EMAIL', 'noreply@livestockiq.app')
        self.frontend_url = getattr(settings, 'FRONTEND_URL', '')

    def send_email(self, to, subject, text, html=None, attachments=None):
        """
        Send a single email.

        Args:
            to: Recipient address
            subject: Subject line
            text: Plain-text body
            html: Optional HTML alternative
            attachments: Optional list of (filename, bytes, mimetype)

        Returns:
            dict: {'success': bool, 'error': str or None}
        """
        if not to:
            return {'success': False, 'error': 'Recipient has no email address'}
        try:
            message = EmailMultiAlternatives(
                subject=subject,
                body=text,
                from_email=self.from_email,
                to=[to],
            )
            if html:
                message.attach_alternative(html, 'text/html')
            for filename, content, mimetype in attachments or []:
                message.attach(filename, content, mimetype)
            message.send(fail_silently=False)
            logger.info(f"Email sent to {to}: {subject}")
            return {'success': True, 'error': None}
        except Exception as e:
            logger.error(f"Email send to {to} failed: {str(e)}")
            return {'success': False, 'error': str(e)}

    def send_vet_review_request(self, record):
        """Ask the farmer's assigned vet to review a medicated feed administration."""
        vet = record.farmer.assigned_vet
        if vet is None:
            return {'success': False, 'error': 'Farmer has no assigned veterinarian'}

        feed = record.feed
        subject = f"Feed Administration Review Required - {record.farmer.get_full_name()}"
        message = f"""
Dear Dr. {vet.get_full_name()},

{record.farmer.get_full_name()} has recorded a medicated feed administration that needs your approval.

Feed: {feed.feed_name}
Antimicrobial: {feed.antimicrobial_name} ({format_quantity(feed.antimicrobial_concentration)} {feed.concentration_unit})
Quantity: {format_quantity(record.feed_quantity_used)} {feed.unit}
Animals: {', '.join(record.animal_ids)}
Start Date: {record.start_date}

Review it here: {self.frontend_url}/vet/feed-administrations/{record.id}

Best regards,
LivestockIQ Team
"""
        return self.send_email(vet.email, subject, message)

    def send_prescription_email(self, record, prescription, pdf_bytes):
        """Send the approved prescription to the farmer with the PDF attached."""
        farmer = record.farmer
        subject = f"Feed Administration Approved - Prescription {str(prescription.id)[:8]}"
        withdrawal_line = (
            f"Withdrawal period ends: {record.withdrawal_end_date}\n"
            if record.withdrawal_end_date else ''
        )
        message = f"""
Dear {farmer.get_full_name()},

Your feed administration of {record.feed.feed_name} has been approved by Dr. {prescription.vet.get_full_name()}.

Animals: {', '.join(record.animal_ids)}
{withdrawal_line}
The prescription is attached. Do not sell milk, meat or eggs from these animals before the withdrawal period ends.

Best regards,
LivestockIQ Team
"""
        return self.send_email(
            farmer.email,
            subject,
            message,
            attachments=[(f"prescription_{prescription.id}.pdf", pdf_bytes, 'application/pdf')],
        )

    def send_rejection_email(self, record):
        """Tell the farmer their feed administration was rejected and why."""
        farmer = record.farmer
        subject = f"Feed Administration Rejected - {record.feed.feed_name}"
        message = f"""
Dear {farmer.get_full_name()},

Your feed administration of {record.feed.feed_name} was rejected by your veterinarian.

Reason: {record.rejection_reason}

The {format_quantity(record.feed_quantity_used)} {record.feed.unit} of feed has been returned to your inventory.

Best regards,
LivestockIQ Team
"""
        return self.send_email(farmer.email, subject, message)

    def build_withdrawal_ended_email(self, farmer, tag_ids):
        """Subject and body telling a farmer the listed animals now need MRL testing."""
        subject = 'MRL Testing Required for Animals'
        animal_lines = '\n'.join(f"- Animal {tag_id}" for tag_id in tag_ids)
        message = f"""
Dear {farmer.get_full_name()},

The withdrawal period has ended for the following animal(s):
{animal_lines}

Action Required: Please upload MRL lab test results for these animals.
These animals cannot be sold or slaughtered until MRL tests are completed and approved by a regulator.

Best regards,
LivestockIQ Team
"""
        return subject, message

    def build_expiring_feed_email(self, farmer, batches):
        """Subject and body listing feed batches that expire soon."""
        subject = f"{len(batches)} Feed Batch(es) Expiring Soon"
        batch_lines = '\n'.join(
            f"- {batch.feed_name} ({format_quantity(batch.remaining_quantity)} {batch.unit} left) expires {batch.expiry_date}"
            for batch in batches
        )
        message = f"""
Dear {farmer.get_full_name()},

The following feed batches in your inventory are close to expiry:
{batch_lines}

Expired feed cannot be used for new feed administrations.

Best regards,
LivestockIQ Team
"""
        return subject, message
