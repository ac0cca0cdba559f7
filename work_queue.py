# work_queue.py
"""
[V1.0] 单工作线程的后台任务队列
- 协作式取消 (abort 标志，在工作单元之间检查)
- 进度/状态/活动时间，供前端轮询
- 捕获工作线程中的异常，前端通过 fetch_exceptions 取回
- 每个任务集结束时触发一次 idle 通知
- batch() 期间加入的任务属于同一个任务集
"""
import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from datetime import timedelta
from enum import Enum
from typing import Callable, Deque, List, Optional, Tuple

logger = logging.getLogger(__name__)

Task = Callable[[], None]
IdleCallback = Callable[["WorkQueue"], None]


class RunOutcome(str, Enum):
    """一个任务集的最终结果"""

    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


class WorkQueue:
    """
    串行执行任务的后台队列。同一时间只有一个任务集在运行；
    忙碌时加入的任务并入当前任务集。
    """

    def __init__(self, name: str = "WorkQueue"):
        self.name = name
        self._lock = threading.Lock()
        self._idle_cond = threading.Condition(self._lock)
        self._task_cond = threading.Condition(self._lock)
        self._holds = 0
        self._pending: Deque[Task] = deque()
        self._worker: Optional[threading.Thread] = None
        self._running = False
        self._notifying = 0
        self._aborting = False
        self._failed = False
        self._exceptions: List[BaseException] = []
        self._idle_callbacks: List[IdleCallback] = []
        self._progress: Tuple[int, int] = (0, 0)
        self._status: Optional[str] = None
        self._active_total = 0.0
        self._active_since: Optional[float] = None
        self._last_outcome: Optional[RunOutcome] = None

    # ------------------------------------------------------------------
    # 调度
    # ------------------------------------------------------------------

    def add_last(self, task: Task) -> bool:
        """
        将任务追加到队尾；必要时启动工作线程。
        当前任务集已失败或正在取消时丢弃任务并返回 False。
        """
        with self._lock:
            if self._running and (self._failed or self._aborting):
                logger.debug(f"[{self.name}] 任务集已结束，丢弃新任务")
                return False
            self._pending.append(task)
            self._task_cond.notify_all()
            if self._running:
                return True
            self._running = True
            self._aborting = False
            self._failed = False
            self._progress = (0, 0)
            self._active_since = time.monotonic()
            self._worker = threading.Thread(
                target=self._worker_loop, name=f"{self.name}Worker", daemon=True
            )
            self._worker.start()
        return True

    enqueue = add_last

    @contextmanager
    def batch(self):
        """
        批量入队。退出之前，工作线程即使已排空队列也不会结束任务集，
        因此多个阶段只触发一次 idle。

            with queue.batch():
                queue.add_last(analyze)
                queue.add_last(export)
        """
        with self._lock:
            self._holds += 1
        try:
            yield self
        finally:
            with self._lock:
                self._holds -= 1
                self._task_cond.notify_all()

    def abort(self):
        """请求取消: 丢弃等待中的任务，运行中的任务在下一个单元边界停止。"""
        with self._lock:
            if not self._running:
                return
            if not self._aborting:
                logger.warning(f"🛑 [{self.name}] 已请求取消")
            self._aborting = True
            self._pending.clear()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """阻塞直到队列空闲 (包括 idle 回调执行完毕)。超时返回 False。"""
        with self._idle_cond:
            return self._idle_cond.wait_for(
                lambda: not self._running and self._notifying == 0, timeout
            )

    def on_idle(self, callback: IdleCallback):
        """注册 idle 回调，每个任务集结束时调用一次。"""
        with self._lock:
            self._idle_callbacks.append(callback)

    def remove_idle_handler(self, callback: IdleCallback):
        with self._lock:
            if callback in self._idle_callbacks:
                self._idle_callbacks.remove(callback)

    # ------------------------------------------------------------------
    # 轮询接口
    # ------------------------------------------------------------------

    @property
    def is_idle(self) -> bool:
        with self._lock:
            return not self._running and self._notifying == 0

    @property
    def is_aborting(self) -> bool:
        with self._lock:
            return self._aborting

    @property
    def progress(self) -> Tuple[int, int]:
        with self._lock:
            return self._progress

    def set_progress(self, current: int, maximum: Optional[int] = None):
        with self._lock:
            if maximum is None:
                maximum = self._progress[1]
            self._progress = (current, max(maximum, current))

    @property
    def status(self) -> Optional[str]:
        with self._lock:
            return self._status

    def set_status(self, status: Optional[str]):
        with self._lock:
            self._status = status

    @property
    def active_time(self) -> timedelta:
        with self._lock:
            total = self._active_total
            if self._active_since is not None:
                total += time.monotonic() - self._active_since
        return timedelta(seconds=total)

    @property
    def last_outcome(self) -> Optional[RunOutcome]:
        with self._lock:
            return self._last_outcome

    def add_exception(self, exc: BaseException):
        with self._lock:
            self._exceptions.append(exc)

    def fetch_exceptions(self) -> List[BaseException]:
        """取出并清空已捕获的异常列表。"""
        with self._lock:
            exceptions, self._exceptions = self._exceptions, []
        return exceptions

    def peek_exceptions(self) -> List[BaseException]:
        """返回已捕获异常的副本，不清空。"""
        with self._lock:
            return list(self._exceptions)

    # ------------------------------------------------------------------
    # 工作线程
    # ------------------------------------------------------------------

    def _worker_loop(self):
        while True:
            with self._lock:
                while not self._pending and self._holds:
                    self._task_cond.wait()
                if not self._pending:
                    callbacks = self._finish_task_set()
                    break
                task = self._pending.popleft()
            try:
                task()
            except Exception as e:
                logger.error(f"❌ [{self.name}] 任务执行失败: {e}", exc_info=True)
                with self._lock:
                    self._exceptions.append(e)
                    self._failed = True
                    self._pending.clear()

        try:
            for callback in callbacks:
                try:
                    callback(self)
                except Exception as e:
                    logger.error(f"❌ [{self.name}] idle 回调失败: {e}")
                    self.add_exception(e)
        finally:
            with self._idle_cond:
                self._notifying -= 1
                self._idle_cond.notify_all()

    def _finish_task_set(self) -> List[IdleCallback]:
        """在持有锁的情况下完成任务集的状态切换。"""
        if self._failed:
            outcome = RunOutcome.FAILED
        elif self._aborting:
            outcome = RunOutcome.ABORTED
        else:
            outcome = RunOutcome.COMPLETED
        self._last_outcome = outcome
        if self._active_since is not None:
            self._active_total += time.monotonic() - self._active_since
            self._active_since = None
        self._running = False
        self._aborting = False
        self._status = None
        self._notifying += 1
        logger.info(f"💤 [{self.name}] 任务集结束: {outcome.value}")
        return list(self._idle_callbacks)
