import logging
import os
import posixpath
from datetime import datetime, timezone
from typing import Optional

import git
from git import Actor

from .base import CommitWriter

logger = logging.getLogger(__name__)


def format_git_date(when: datetime) -> str:
    """
    转为 Git 原始日期格式 "<unix 时间戳> +0000"。
    不带时区的时间视为 UTC。
    """
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return f"{int(when.timestamp())} +0000"


class GitCommitWriter(CommitWriter):
    """
    基于 GitPython 的提交写入器。
    工作树镜像位于 repo_path，每次操作后立即更新索引。
    """

    def __init__(self, repo_path: str):
        self.repo_path = os.path.abspath(repo_path)
        os.makedirs(self.repo_path, exist_ok=True)
        try:
            self.repo = git.Repo(self.repo_path)
            logger.info(f"ℹ️ [Git] 使用已有仓库: {self.repo_path}")
        except git.InvalidGitRepositoryError:
            self.repo = git.Repo.init(self.repo_path)
            logger.info(f"✅ [Git] 已初始化仓库: {self.repo_path}")

    def _full_path(self, path: str) -> str:
        normalized = posixpath.normpath(path)
        if (
            not path
            or posixpath.isabs(normalized)
            or normalized == ".."
            or normalized.startswith("../")
            or normalized.split("/")[0] == ".git"
        ):
            raise ValueError(f"Invalid target path: {path!r}")
        return os.path.join(self.repo_path, *normalized.split("/"))

    def set_commit_encoding(self, encoding: Optional[str]):
        with self.repo.config_writer() as writer:
            writer.set_value("i18n", "commitencoding", encoding or "UTF-8")
        logger.info(f"ℹ️ [Git] 提交编码: {encoding or 'UTF-8'}")

    def write_file(self, path: str, data: bytes):
        full_path = self._full_path(path)
        if os.path.isdir(full_path):
            raise IsADirectoryError(full_path)
        os.makedirs(os.path.dirname(full_path), exist_ok=True)
        with open(full_path, "wb") as f:
            f.write(data)
        self.repo.index.add([posixpath.normpath(path)])

    def delete(self, path: str):
        full_path = self._full_path(path)
        if not os.path.exists(full_path):
            raise FileNotFoundError(full_path)
        self.repo.index.remove(
            [posixpath.normpath(path)], working_tree=True, r=True
        )

    def rename(self, old_path: str, new_path: str):
        source = self._full_path(old_path)
        target = self._full_path(new_path)
        if not os.path.exists(source):
            raise FileNotFoundError(source)
        os.makedirs(os.path.dirname(target), exist_ok=True)
        self.repo.index.move(
            [posixpath.normpath(old_path), posixpath.normpath(new_path)]
        )

    def commit(
        self,
        author_name: str,
        author_email: str,
        when: datetime,
        message: str,
        parent: Optional[str],
    ) -> str:
        actor = Actor(author_name, author_email)
        date = format_git_date(when)
        parents = [self.repo.commit(parent)] if parent else []
        new_commit = self.repo.index.commit(
            message,
            parent_commits=parents,
            author=actor,
            committer=actor,
            author_date=date,
            commit_date=date,
            head=True,
        )
        return new_commit.hexsha

    def discard(self):
        """索引和工作树回到 HEAD；还没有提交时清空索引"""
        if self.repo.head.is_valid():
            self.repo.head.reset(index=True, working_tree=True)
        else:
            self.repo.git.rm("--cached", "-r", "-q", "--ignore-unmatch", ".")
        self.repo.git.clean("-f", "-d", "-q")
        logger.info("ℹ️ [Git] 已丢弃未提交的修改")

    def tag(
        self,
        name: str,
        commit_id: str,
        annotated: bool,
        tagger_name: str = "",
        tagger_email: str = "",
        when: Optional[datetime] = None,
        message: str = "",
    ):
        if not annotated:
            self.repo.create_tag(name, ref=commit_id)
            return

        env = {
            "GIT_COMMITTER_NAME": tagger_name,
            "GIT_COMMITTER_EMAIL": tagger_email,
        }
        if when is not None:
            env["GIT_COMMITTER_DATE"] = format_git_date(when)
        with self.repo.git.custom_environment(**env):
            self.repo.create_tag(name, ref=commit_id, message=message or name)

    def close(self):
        self.repo.close()
