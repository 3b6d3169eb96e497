API_PREFIX = "/api/v1"

ROLE_STUDENT = "student"
ROLE_INSTRUCTOR = "instructor"
ROLE_ORGANIZATION = "organization"
ROLE_ADMIN = "admin"
ROLE_ACCOUNTANT = "accountant"
ROLE_SYSADMIN = "sysadmin"
ROLE_HR = "hr"
ROLE_VENDOR = "vendor"

ROLES = [
    ROLE_STUDENT,
    ROLE_INSTRUCTOR,
    ROLE_ORGANIZATION,
    ROLE_ADMIN,
    ROLE_ACCOUNTANT,
    ROLE_SYSADMIN,
    ROLE_HR,
    ROLE_VENDOR,
]

USER_STATUSES = ["active", "inactive"]

COURSE_STATUSES = ["pending", "confirmed", "completed", "cancelled"]

INVOICE_STATUSES = ["pending", "payment_submitted", "overdue", "paid"]
# invoices in these states may still collect payments
INVOICE_OPEN_STATUSES = ["pending", "payment_submitted", "overdue"]

PAYMENT_STATUSES = ["pending_verification", "verified", "rejected", "reversed"]

VENDOR_INVOICE_STATUSES = [
    "submitted",
    "pending_review",
    "approved",
    "rejected",
    "sent_to_accounting",
    "partially_paid",
    "paid",
]
VENDOR_INVOICE_REVIEWABLE = ["submitted", "pending_review"]
VENDOR_INVOICE_PAYABLE = ["sent_to_accounting", "partially_paid"]
VENDOR_INVOICE_ACCOUNTING = ["sent_to_accounting", "partially_paid", "paid"]

VENDOR_PAYMENT_STATUSES = ["pending", "processed", "reversed"]

TIMESHEET_STATUSES = ["pending", "approved", "rejected"]

PROFILE_CHANGE_STATUSES = ["pending", "approved", "rejected"]
# user columns an instructor or organization user may ask HR to change
PROFILE_CHANGE_FIELDS = ["first_name", "last_name", "email", "phone", "mobile"]

INSTRUCTOR_PAYMENT_STATUSES = ["pending", "approved", "rejected"]
INSTRUCTOR_PAYMENT_METHODS = ["direct_deposit", "cheque", "eft"]

PAYMENT_METHODS = ["cheque", "eft", "credit_card", "cash", "wire", "other"]

CONFIG_CATEGORIES = ["general", "billing", "payroll", "email", "security"]

VENDOR_PDF_MAX_BYTES = 5 * 1024 * 1024
