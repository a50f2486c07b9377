import smtplib
import unittest
from unittest.mock import patch

from spinsite.mailer import (
    OutboxMailer,
    SmtpMailer,
    password_changed_email,
    password_reset_email,
    verification_result_email,
)


class MailerTests(unittest.TestCase):
    def test_outbox_keeps_messages(self):
        mailer = OutboxMailer(sender="rewards@example.com")
        self.assertTrue(mailer.send("a@example.com", "Hi", "Body"))
        self.assertEqual(len(mailer.sent), 1)
        self.assertEqual(mailer.sent[0]["From"], "rewards@example.com")
        self.assertEqual(mailer.sent[0].get_content().strip(), "Body")

    @patch("spinsite.mailer.smtplib.SMTP")
    def test_smtp_uses_starttls(self, mock_smtp):
        smtp = mock_smtp.return_value.__enter__.return_value
        mailer = SmtpMailer("smtp.example.com", 587, "user", "secret", "rewards@example.com")
        self.assertTrue(mailer.send("a@example.com", "Hi", "Body"))
        mock_smtp.assert_called_once_with("smtp.example.com", 587, timeout=15.0)
        smtp.starttls.assert_called_once()
        smtp.login.assert_called_once_with("user", "secret")
        smtp.send_message.assert_called_once()

    @patch("spinsite.mailer.smtplib.SMTP_SSL")
    def test_smtp_ssl_port(self, mock_smtp_ssl):
        smtp = mock_smtp_ssl.return_value.__enter__.return_value
        mailer = SmtpMailer("smtp.example.com", 465, None, None, "rewards@example.com")
        self.assertTrue(mailer.send("a@example.com", "Hi", "Body"))
        smtp.login.assert_not_called()
        smtp.send_message.assert_called_once()

    @patch("spinsite.mailer.smtplib.SMTP")
    def test_smtp_failure_returns_false(self, mock_smtp):
        smtp = mock_smtp.return_value.__enter__.return_value
        smtp.send_message.side_effect = smtplib.SMTPException("rejected")
        mailer = SmtpMailer("smtp.example.com", 587, None, None, "rewards@example.com")
        self.assertFalse(mailer.send("a@example.com", "Hi", "Body"))

    def test_templates(self):
        subject, body = password_reset_email("Spins", "punter", "https://x/reset?token=t")
        self.assertIn("Reset", subject)
        self.assertIn("https://x/reset?token=t", body)

        subject, body = password_changed_email("Spins", "punter")
        self.assertIn("changed", subject)
        self.assertIn("Hi punter", body)

        subject, body = verification_result_email("Spins", "punter", False, "Blurry screenshot")
        self.assertIn("not approved", subject)
        self.assertIn("Blurry screenshot", body)
        subject, _ = verification_result_email("Spins", "punter", True)
        self.assertIn("verified", subject)


if __name__ == "__main__":
    unittest.main()
