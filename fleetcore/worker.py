"""
Background worker.

Runs the periodic triggers (maintenance reminders at 09:00, daily aggregation
at 00:00) and drains the job queues. Start with `python -m fleetcore.worker`.
"""

import time
import logging
import schedule
from datetime import timedelta
from typing import Optional
from redis import Redis

from fleetcore.src import exceptions, jobs, mailer as mailers
from fleetcore.src.db import Company, MaintenanceLog, Trip, User, Vehicle, sessionMaker
from fleetcore.src.enums import CompanyStatus, ServiceType, TripStatus
from fleetcore.src.functions import monthStart, toUTC, utcNow
from fleetcore.src.redis import acquireLock, claimOnce, redisClient, releaseLock
from fleetcore.src.tenancy import TenantRepository, TenantScope
from fleetcore.src.constants import (
    AGGREGATION_TRIGGER_TIME,
    MAINTENANCE_REMINDER_DAYS,
    REMINDER_TRIGGER_TIME,
    WORKER_POLL_INTERVAL,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("Worker")


class Worker:
    def __init__(self, client: Optional[Redis] = None, mailer=None, sessionFactory=sessionMaker):
        self.client = client or redisClient
        self.mailer = mailer or mailers.mailer
        self.sessionFactory = sessionFactory
        self.queues = {name: jobs.JobQueue(name, client=self.client) for name in jobs.QUEUES}
        self.handlers = {
            jobs.SEND_EMAIL: self.sendEmail,
            jobs.CHECK_REMINDERS: self.checkReminders,
            jobs.DAILY_AGGREGATION: self.dailyAggregation,
        }

    # -----------------------------------------------------------------------
    # Handlers
    # -----------------------------------------------------------------------
    def sendEmail(self, payload: dict) -> bool:
        if payload.get("template"):
            subject, text = mailers.render(payload["template"], payload.get("context", {}))
        else:
            subject, text = payload["subject"], payload["text"]
        return self.mailer.send(payload["to"], subject, text, payload.get("html"))

    def checkReminders(self, payload: dict) -> int:
        """
        Queue a maintenance-reminder email for every log falling due within the
        reminder horizon that has not been reminded yet. Returns the number queued.
        """
        days = payload.get("days", MAINTENANCE_REMINDER_DAYS)
        now = utcNow()
        horizon = now + timedelta(days=days)
        queued = 0
        session = self.sessionFactory()
        try:
            companies = (
                session.query(Company)
                .filter(Company.status == CompanyStatus.ACTIVE)
                .order_by(Company.id)
                .all()
            )
            for company in companies:
                scope = TenantScope(company.id)
                recipient = company.billing_email
                if not recipient:
                    owner = TenantRepository(session, scope, User).get(company.owner_id)
                    recipient = owner.email if owner else None
                if not recipient:
                    logger.warning(f"No reminder recipient for company {company.id}")
                    continue
                vehicles = TenantRepository(session, scope, Vehicle)
                dueLogs = TenantRepository(session, scope, MaintenanceLog).find(
                    MaintenanceLog.next_due_date.isnot(None),
                    MaintenanceLog.next_due_date >= now,
                    MaintenanceLog.next_due_date <= horizon,
                    MaintenanceLog.reminder_sent_on.is_(None),
                    orderBy=MaintenanceLog.next_due_date,
                )
                for log in dueLogs:
                    vehicle = vehicles.get(log.vehicle_id)
                    self.queues[jobs.EMAIL].add(
                        jobs.SEND_EMAIL,
                        {
                            "to": recipient,
                            "template": "maintenance-reminder",
                            "context": {
                                "vehicle_number": vehicle.vehicle_number if vehicle else log.vehicle_id,
                                "service_type": ServiceType(log.service_type).name.replace("_", " ").title(),
                                "next_due_date": toUTC(log.next_due_date).date().isoformat(),
                            },
                        },
                    )
                    log.reminder_sent_on = now
                    queued += 1
            session.commit()
        finally:
            session.close()
        logger.info(f"Queued {queued} maintenance reminders")
        return queued

    def dailyAggregation(self, payload: dict) -> list:
        """
        Per company trip counts and revenue of the last day. Resets the monthly
        usage counters of companies whose last reset is in an earlier month.
        """
        now = utcNow()
        since = now - timedelta(days=1)
        thisMonth = monthStart(now)
        report = []
        session = self.sessionFactory()
        try:
            for company in session.query(Company).order_by(Company.id).all():
                trips = TenantRepository(session, TenantScope(company.id), Trip)
                created = trips.count(Trip.created_on >= since)
                completed = trips.find(
                    Trip.status == TripStatus.COMPLETED, Trip.end_time >= since
                )
                report.append(
                    {
                        "company_id": company.id,
                        "trips_created": created,
                        "trips_completed": len(completed),
                        "revenue": sum(trip.trip_cost or 0 for trip in completed),
                    }
                )
                resetOn = toUTC(company.usage_reset_on)
                if resetOn is None or resetOn < thisMonth:
                    company.vehicles_created_this_month = 0
                    company.drivers_created_this_month = 0
                    company.users_created_this_month = 0
                    company.trips_completed_this_month = 0
                    company.usage_reset_on = now
            session.commit()
        finally:
            session.close()
        logger.info(f"Daily aggregation finished for {len(report)} companies")
        return report

    # -----------------------------------------------------------------------
    # Triggers
    # -----------------------------------------------------------------------
    def trigger(self, queueName: str, jobName: str) -> Optional[dict]:
        """
        Enqueue a periodic job once per day across all workers. The mutex
        serializes workers and the per-day marker skips the late ones.
        """
        lock = None
        try:
            lock = acquireLock(jobName, client=self.client, blockingTimeOut=5)
            marker = f"trigger:{jobName}:{utcNow().date().isoformat()}"
            if not claimOnce(marker, 24 * 60 * 60, client=self.client):
                logger.info(f"{jobName} already triggered today")
                return None
            return self.queues[queueName].add(jobName, {})
        except exceptions.LockAcquireTimeout:
            logger.info(f"{jobName} is being triggered by another worker")
            return None
        finally:
            releaseLock(lock)

    def triggerReminders(self) -> Optional[dict]:
        return self.trigger(jobs.MAINTENANCE, jobs.CHECK_REMINDERS)

    def triggerAggregation(self) -> Optional[dict]:
        return self.trigger(jobs.ANALYTICS, jobs.DAILY_AGGREGATION)

    # -----------------------------------------------------------------------
    # Loop
    # -----------------------------------------------------------------------
    def drain(self) -> int:
        """Process every ready job of every queue. Returns the number processed."""
        processed = 0
        for queue in self.queues.values():
            while queue.process(self.handlers) is not None:
                processed += 1
        return processed

    def run(self):
        schedule.every().day.at(REMINDER_TRIGGER_TIME).do(self.triggerReminders)
        schedule.every().day.at(AGGREGATION_TRIGGER_TIME).do(self.triggerAggregation)
        logger.info("Worker started")
        while True:
            try:
                schedule.run_pending()
                self.drain()
            except Exception as e:
                logger.error(f"Worker loop error: {e}")
            time.sleep(WORKER_POLL_INTERVAL)


if __name__ == "__main__":
    Worker().run()
