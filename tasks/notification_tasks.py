"""
Celery tasks for invitation delivery maintenance

Tasks:
- retry_failed_notifications_task: automatic retry sweep for one channel
- expire_temporary_passwords_task: moves lapsed temporary credentials to token_expired

Both resolve their services from the registry on the current Flask app.
"""

from typing import List, Optional
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from celery_worker import celery
from logging_config import get_logger

logger = get_logger(__name__)


@celery.task(bind=True, max_retries=3)
def retry_failed_notifications_task(self, channel: str, member_ids: Optional[List[str]] = None,
                                    actor_id: Optional[int] = None, limit: int = 100):
    """
    Retry failed invitations for the given members, or for every imported
    member currently in the channel's failure state when none are given.

    Returns:
        Dict with the batch counts
    """
    retry_service = current_app.services.get('notification_retry')

    try:
        if member_ids is None:
            member_ids = retry_service.find_members_due_for_retry(channel, limit=limit)

        if not member_ids:
            logger.info("No failed notifications to retry", channel=channel)
            return {'status': 'success', 'channel': channel, 'total': 0, 'successful': 0, 'failed': 0,
                    'skipped': 0}

        result = retry_service.retry_failed_notifications(member_ids, channel, actor_id)
    except SQLAlchemyError as e:
        logger.error("Notification retry sweep hit a database error", channel=channel, error=str(e),
                     attempt=self.request.retries + 1)
        raise self.retry(exc=e, countdown=2 ** self.request.retries * 60)

    if result.is_failure:
        logger.error("Notification retry sweep rejected", channel=channel, error=result.error)
        return {'status': 'error', 'channel': channel, 'error': result.error, 'error_code': result.error_code}

    summary = result.data
    logger.info("Notification retry sweep finished", channel=channel, total=summary['total'],
                successful=summary['successful'], failed=summary['failed'], skipped=summary['skipped'])
    return {
        'status': 'success',
        'channel': channel,
        'total': summary['total'],
        'successful': summary['successful'],
        'failed': summary['failed'],
        'skipped': summary['skipped'],
    }


@celery.task(bind=True)
def expire_temporary_passwords_task(self, limit: int = 500):
    result = current_app.services.get('member_activation').expire_stale_credentials(limit=limit)
    return {'status': 'success', **result.data}
