"""
Scheduled jobs for Enquiry CRM
- Nightly payment ledger reconciliation (report stored in ledger_reports)
- Hourly purge of expired login sessions
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from enquiry_crm.config import APP_TIMEZONE, LEDGER_RECONCILE_HOUR, db, now_iso
from enquiry_crm.services.enquiry_engine import EnquiryEngine
from enquiry_crm.services.payment_ledger import PaymentLedger
from enquiry_crm.services.record_store import MotorRecordStore, RecordStore, StoreError

logger = logging.getLogger("scheduler")


class TaskScheduler:
    """Scheduled task manager"""

    def __init__(self, engine: EnquiryEngine = None, reports: RecordStore = None, sessions: RecordStore = None):
        self.scheduler = AsyncIOScheduler(timezone=APP_TIMEZONE)
        self.engine = engine or EnquiryEngine(
            MotorRecordStore(db.enquiries), PaymentLedger(MotorRecordStore(db.payments))
        )
        self.reports = reports or MotorRecordStore(db.ledger_reports)
        self.sessions = sessions or MotorRecordStore(db.sessions)

    def start(self):
        """Start the scheduler with every job"""
        self.scheduler.add_job(
            self.reconcile_ledger,
            CronTrigger(hour=LEDGER_RECONCILE_HOUR, minute=0),
            id="ledger_reconciliation",
            name="Payment ledger reconciliation",
            replace_existing=True
        )

        self.scheduler.add_job(
            self.purge_expired_sessions,
            CronTrigger(minute=15),
            id="purge_expired_sessions",
            name="Purge expired sessions",
            replace_existing=True
        )

        self.scheduler.start()
        logger.info("Scheduler started")

    def stop(self):
        """Stop the scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Scheduler stopped")

    # ==================== JOBS ====================

    async def reconcile_ledger(self):
        """Compare enquiry payment histories with the ledger and store the report"""
        try:
            report = await self.engine.reconcile_ledger(repair=False)
            await self.reports.add(report)
        except StoreError as e:
            logger.error(f"[SCHEDULER] ledger reconciliation failed: {e}")
            return None

        missing = len(report["missingFromLedger"])
        if missing:
            logger.warning(f"[SCHEDULER] ledger reconciliation: {missing} payments missing from ledger")
        else:
            logger.info("[SCHEDULER] ledger reconciliation: ledger consistent")
        return report

    async def purge_expired_sessions(self):
        try:
            now = now_iso()
            expired = [s for s in await self.sessions.get_all() if s.get("expiresAt", "") <= now]
            for session in expired:
                await self.sessions.delete(session["id"])
        except StoreError as e:
            logger.error(f"[SCHEDULER] session purge failed: {e}")
            return 0
        if expired:
            logger.info(f"[SCHEDULER] purged {len(expired)} expired sessions")
        return len(expired)


# Global instance
task_scheduler = TaskScheduler()
