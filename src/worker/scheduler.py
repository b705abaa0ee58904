"""APScheduler-задачи импорта: расписания задач, default sync, очистка логов."""
from datetime import datetime, timedelta

from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from src.config import Settings, parse_time_of_day
from src.exceptions import TaskNotActiveError, TaskNotFoundError
from src.models.run import RunSummary, TriggerType
from src.models.task import ImportTask
from src.run_log import RunLog
from src.task_store import DEFAULT_TASK_ID, TaskStore, build_default_task
from src.worker.runner import ImportRunner

FREQUENCY_INTERVALS: dict[str, timedelta] = {
    "hourly": timedelta(hours=1),
    "twicedaily": timedelta(hours=12),
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
}

JOB_PREFIX = "import_task_"
CLEANUP_JOB_ID = "cleanup_logs"
INITIAL_SYNC_JOB_ID = "initial_sync"


def job_id_for(task_id: str) -> str:
    return f"{JOB_PREFIX}{task_id}"


def compute_first_run(frequency: str, schedule_time: str, now: datetime) -> datetime:
    """Первый запуск: hourly через час, иначе сегодня в HH:MM или завтра, если время прошло."""
    if frequency == "hourly":
        return now + FREQUENCY_INTERVALS["hourly"]
    hour, minute = parse_time_of_day(schedule_time)
    first = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if first <= now:
        first += timedelta(days=1)
    return first


def create_scheduler() -> AsyncIOScheduler:
    """Создать APScheduler с дефолтами для async job'ов."""
    return AsyncIOScheduler(
        job_defaults={
            # None = без ограничения: опоздавший job всё равно выполнится
            "misfire_grace_time": None,
            "coalesce": True,
            "max_instances": 1,
        }
    )


class TaskScheduler:
    """Связывает задачи импорта с APScheduler."""

    def __init__(
        self,
        scheduler: AsyncIOScheduler,
        task_store: TaskStore,
        runner: ImportRunner,
        run_log: RunLog,
        settings: Settings,
    ) -> None:
        self.scheduler = scheduler
        self.task_store = task_store
        self.runner = runner
        self.run_log = run_log
        self.settings = settings
        self._log = logger.bind(component="scheduler")

    def register_listeners(self) -> None:
        """Пересоздавать расписание при сохранении/удалении задачи."""
        self.task_store.on_saved(self.reschedule_task)
        self.task_store.on_deleted(self.unschedule_task)

    def schedule_task(self, task: ImportTask, now: datetime | None = None) -> Job | None:
        """Поставить задачу в расписание (старый job снимается)."""
        if task.id is None:
            return None
        self.unschedule_job(job_id_for(task.id))
        if not task.is_schedulable:
            self._log.debug(f"Task {task.id} is not schedulable ({task.status}, enabled={task.schedule_enabled})")
            return None

        now = now or datetime.now().astimezone()
        first_run = compute_first_run(task.schedule_frequency, task.schedule_time, now)
        job = self.scheduler.add_job(
            self.execute_scheduled_task,
            "interval",
            seconds=int(FREQUENCY_INTERVALS[task.schedule_frequency].total_seconds()),
            start_date=first_run,
            kwargs={
                "task_id": task.id,
                "trigger": "cron" if task.id == DEFAULT_TASK_ID else "scheduler",
            },
            id=job_id_for(task.id),
            replace_existing=True,
        )
        self._log.info(
            f"Task {task.id} scheduled {task.schedule_frequency}, first run at {first_run.isoformat()}"
        )
        return job

    def unschedule_job(self, job_id: str) -> bool:
        if self.scheduler.get_job(job_id) is None:
            return False
        self.scheduler.remove_job(job_id)
        return True

    async def unschedule_task(self, task_id: str) -> None:
        if self.unschedule_job(job_id_for(task_id)):
            self._log.info(f"Task {task_id} unscheduled")

    async def reschedule_task(self, task: ImportTask) -> None:
        self.schedule_task(task)

    def unschedule_all(self) -> int:
        removed = 0
        for job in self.scheduler.get_jobs():
            if job.id.startswith(JOB_PREFIX):
                self.scheduler.remove_job(job.id)
                removed += 1
        return removed

    def scheduled_jobs(self) -> list[dict[str, str | None]]:
        """Список запланированных импортов с временем следующего запуска."""
        jobs = []
        for job in self.scheduler.get_jobs():
            if not job.id.startswith(JOB_PREFIX):
                continue
            # У job'ов до старта планировщика next_run_time ещё нет
            next_run = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "task_id": job.kwargs.get("task_id"),
                "next_run_at": next_run.isoformat() if next_run else None,
            })
        return jobs

    async def load_all(self) -> int:
        """Поставить в расписание все active задачи с включённым расписанием."""
        tasks = await self.task_store.list_schedulable()
        for task in tasks:
            self.schedule_task(task)
        self._log.info(f"Scheduled {len(tasks)} import tasks")
        return len(tasks)

    async def resolve_task(self, task_id: str) -> ImportTask:
        if task_id == DEFAULT_TASK_ID:
            return build_default_task(self.settings)
        return await self.task_store.get(task_id)

    async def execute_scheduled_task(self, task_id: str, trigger: TriggerType = "scheduler") -> RunSummary | None:
        """Точка входа job'а. Исключения логируются, процесс не падает."""
        try:
            task = await self.resolve_task(task_id)
            return await self.runner.run(task, trigger)
        except TaskNotFoundError:
            self._log.warning(f"Scheduled task {task_id} no longer exists, unscheduling")
            await self.unschedule_task(task_id)
        except TaskNotActiveError as e:
            self._log.warning(f"Scheduled task {task_id} skipped: {e}")
        except Exception as e:
            self._log.error(f"Scheduled task {task_id} crashed: {e}")
        return None

    async def run_now(self, task_id: str, trigger: TriggerType = "manual") -> RunSummary | None:
        """Запуск вне расписания; guard соблюдается."""
        task = await self.resolve_task(task_id)
        return await self.runner.run(task, trigger)

    def schedule_default_sync(self, now: datetime | None = None) -> Job | None:
        """Импорт из глобальных настроек как задача 'default'."""
        return self.schedule_task(build_default_task(self.settings), now=now)

    def schedule_initial_sync(self) -> Job:
        """Однократный импорт сразу после старта."""
        return self.scheduler.add_job(
            self.execute_scheduled_task,
            "date",
            kwargs={"task_id": DEFAULT_TASK_ID, "trigger": "initial"},
            id=INITIAL_SYNC_JOB_ID,
            replace_existing=True,
        )

    async def cleanup_logs(self) -> None:
        try:
            await self.run_log.cleanup(
                retention_days=self.settings.log_retention_days,
                max_entries=self.settings.log_max_entries,
            )
        except Exception as e:
            self._log.error(f"Log cleanup failed: {e}")

    def schedule_cleanup(self) -> Job:
        """Еженедельно в воскресенье 4:00: очистка старых логов и запусков."""
        return self.scheduler.add_job(
            self.cleanup_logs,
            "cron",
            day_of_week="sun",
            hour=4,
            id=CLEANUP_JOB_ID,
            replace_existing=True,
        )
