# /regdesk/config/strings.py

# This file contains all user-facing strings, making them easy to manage,
# update, and eventually localize without changing application logic.

# Main menu
WELCOME_HEADER = "🏢 *Welcome to Our Business Services*\n\n📋 Please select a service:"
MENU_FOOTER = "Reply with the number of your choice, or type 'help' for assistance."
INVALID_SELECTION = "❌ Invalid selection. Please reply with one of the numbers below."

OTHER_SERVICES_HEADER = "🧩 *Other Services*\n\nWhich service are you interested in?"

HELP_TEXT = """🆘 *Help*

Available commands:
• 'menu' or 'start' - Main services menu
• 'back' - Go to previous step
• 'help' - Show this help message
• 'reset' - Start over"""

RESET_NOTICE = "🔄 Session reset."

# Field prompts and validation
FIELD_ERROR_PREFIX = "⚠️"

# Confirmation
CONFIRM_HEADER = "📋 *Please Confirm Your Application Details*"
CONFIRM_FOOTER = """✅ Type 'confirm' (or 1) to submit
✏️ Type 'edit' (or 2) to change your last answer
❌ Type 'cancel' (or 3) to cancel the application"""
CANCELLED = "❌ Application cancelled."
SUBMITTING = "⏳ Submitting your application..."

# Submission outcomes
SUBMISSION_SUCCESS = """🎉 *Application Submitted Successfully!*

📋 Service: {service_label}
✅ Your application has been received and is being processed.
📞 We will contact you within 2-3 business days with updates."""
SUBMISSION_REFERENCE = "🔖 Reference: {reference}"
SUBMISSION_RESTART = "🔄 Reply with anything to return to the main menu."

SUBMISSION_FIELD_ERRORS = """⚠️ We could not accept your application:
{details}

Type 'edit' to correct your last answer, 'confirm' to try again, or 'cancel' to start over."""
SUBMISSION_CONFLICT = """⚠️ An application with these details already exists.

Type 'edit' to change your answers, or 'cancel' to return to the main menu."""
SUBMISSION_UNAVAILABLE = """⏳ Our registration service is temporarily unavailable. Your answers have been kept.

Please type 'confirm' to try again later, or 'cancel' to start over."""

# Generic
GENERIC_ERROR = "😔 Sorry, something went wrong on our side. Please type 'menu' to start again."

# Operator channel
ADMIN_NOTIFICATION_HEADER = "🚨 NEW REGISTRATION ALERT"
ADMIN_NOTIFICATION_FOOTER = "Please follow up within 24 hours"
