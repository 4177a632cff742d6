from .schemas import RecipientProfile, Schedule


def reply_instructions(schedule: Schedule) -> str:
    if schedule.requires_photo and schedule.requires_text:
        return "Reply with a photo and text when done."
    if schedule.requires_photo:
        return "Reply with a photo when done."
    if schedule.requires_text:
        return "Reply DONE when complete."
    return "Reply when done."


def compose_reminder_message(schedule: Schedule, recipient: RecipientProfile) -> str:
    greeting = f"Hi {recipient.name}!" if recipient.name else "Hi!"
    return f"{greeting} Time to: {schedule.title}\n\n{reply_instructions(schedule)}"
