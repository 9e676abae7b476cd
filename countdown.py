# countdown.py - Recurring tournament countdowns driven by APScheduler
# Each countdown owns one interval job that recomputes the lifecycle view every
# tick. The job is removed on stop() and replaced whenever the inputs change.

import threading
import traceback

from apscheduler.jobstores.base import JobLookupError

from lifecycle_timer import IST_TIMEZONE, compute_lifecycle

DEFAULT_INTERVAL_SECONDS = 1

# Marks an update() argument that was not passed at all
_UNCHANGED = object()


class TournamentCountdown:
    """Keeps a live LifecycleView for one tournament."""

    def __init__(self, scheduler, tournament_id, scheduled_date, scheduled_time, status,
                 on_tick=None, on_phase_change=None, clock=None, tz=IST_TIMEZONE,
                 interval_seconds=DEFAULT_INTERVAL_SECONDS):
        self.scheduler = scheduler
        self.tournament_id = tournament_id
        self.scheduled_date = scheduled_date
        self.scheduled_time = scheduled_time
        self.status = status
        self.on_tick = on_tick
        self.on_phase_change = on_phase_change
        self.clock = clock
        self.tz = tz
        self.interval_seconds = interval_seconds
        self.view = None
        self._job = None
        self._lock = threading.Lock()

    @property
    def job_id(self):
        return f"countdown:{self.tournament_id}"

    @property
    def running(self):
        return self._job is not None

    def start(self):
        if self._job is not None:
            return
        self.tick()
        self._job = self.scheduler.add_job(
            self.tick,
            'interval',
            seconds=self.interval_seconds,
            id=self.job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def stop(self):
        job, self._job = self._job, None
        if job is None:
            return
        try:
            job.remove()
        except JobLookupError:
            # Already gone, e.g. the scheduler was shut down first
            pass

    def update(self, scheduled_date=_UNCHANGED, scheduled_time=_UNCHANGED, status=_UNCHANGED):
        """
        Restarts the countdown against new inputs. Omitted arguments keep their
        value; an explicit None replaces it (a cleared schedule field).
        """
        was_running = self.running
        self.stop()
        if scheduled_date is not _UNCHANGED:
            self.scheduled_date = scheduled_date
        if scheduled_time is not _UNCHANGED:
            self.scheduled_time = scheduled_time
        if status is not _UNCHANGED:
            self.status = status
        if was_running:
            self.start()
        else:
            self.tick()

    def compute(self):
        return compute_lifecycle(self.scheduled_date, self.scheduled_time, self.status,
                                 now=self.clock, tz=self.tz)

    def tick(self):
        view = self.compute()
        with self._lock:
            previous, self.view = self.view, view

        if self.on_tick:
            try:
                self.on_tick(view)
            except Exception as e:
                print(f"Error in countdown tick callback for tournament {self.tournament_id}: {e}")
                traceback.print_exc()

        if previous is not None and previous.phase != view.phase and self.on_phase_change:
            try:
                self.on_phase_change(self.tournament_id, previous.phase, view)
            except Exception as e:
                print(f"Error in phase change callback for tournament {self.tournament_id}: {e}")
                traceback.print_exc()
        return view


class CountdownWatcher:
    """One TournamentCountdown per tournament id, all sharing a scheduler."""

    def __init__(self, scheduler, clock=None, tz=IST_TIMEZONE, on_phase_change=None,
                 interval_seconds=DEFAULT_INTERVAL_SECONDS):
        self.scheduler = scheduler
        self.clock = clock
        self.tz = tz
        self.on_phase_change = on_phase_change
        self.interval_seconds = interval_seconds
        self._countdowns = {}
        self._lock = threading.Lock()

    def watch(self, tournament):
        tournament_id = tournament['id']
        with self._lock:
            countdown = self._countdowns.get(tournament_id)
            if countdown is None:
                countdown = TournamentCountdown(
                    self.scheduler,
                    tournament_id,
                    tournament.get('scheduled_date'),
                    tournament.get('scheduled_time'),
                    tournament.get('status'),
                    on_phase_change=self.on_phase_change,
                    clock=self.clock,
                    tz=self.tz,
                    interval_seconds=self.interval_seconds,
                )
                self._countdowns[tournament_id] = countdown
                countdown.start()
                return countdown

        countdown.update(
            scheduled_date=tournament.get('scheduled_date'),
            scheduled_time=tournament.get('scheduled_time'),
            status=tournament.get('status'),
        )
        return countdown

    def unwatch(self, tournament_id):
        with self._lock:
            countdown = self._countdowns.pop(tournament_id, None)
        if countdown is not None:
            countdown.stop()
        return countdown is not None

    def sync(self, tournaments):
        """Watches every given tournament and drops countdowns for ones no longer listed."""
        wanted = {t['id'] for t in tournaments}
        with self._lock:
            stale = [tid for tid in self._countdowns if tid not in wanted]
        for tournament_id in stale:
            self.unwatch(tournament_id)
        for tournament in tournaments:
            self.watch(tournament)

    def stop_all(self):
        with self._lock:
            countdowns = list(self._countdowns.values())
            self._countdowns.clear()
        for countdown in countdowns:
            countdown.stop()

    def view_for(self, tournament_id):
        countdown = self._countdowns.get(tournament_id)
        return countdown.view if countdown else None

    def views(self):
        with self._lock:
            return {tid: c.view for tid, c in self._countdowns.items()}

    def __len__(self):
        return len(self._countdowns)

    def __contains__(self, tournament_id):
        return tournament_id in self._countdowns
