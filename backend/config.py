"""狼人杀投票结算子系统配置"""

from pydantic_settings import BaseSettings
from functools import lru_cache

from models.vote_models import VotingPolicy


class Settings(BaseSettings):
    """应用配置，从环境变量或 .env 文件读取"""

    # 应用基础
    app_name: str = "狼人杀投票结算"
    debug: bool = False

    # 游戏数据目录（投票历史落盘位置）
    game_data_dir: str = "game_data"

    # 投票规则
    execution_rule: str = "runoff"       # 平票处理：runoff / random / no_execution / all_execution
    runoff_tie_rule: str = "random"      # 决选仍平票时的处理
    allow_self_vote: bool = False
    reveal_role_on_death: bool = True
    first_day_execution: bool = True     # 首日是否投票处刑
    max_runoff_attempts: int = 3

    def voting_policy(self) -> VotingPolicy:
        """由当前配置生成不可变的投票规则"""
        return VotingPolicy(
            execution_rule=self.execution_rule,
            runoff_tie_rule=self.runoff_tie_rule,
            allow_self_vote=self.allow_self_vote,
            reveal_role_on_death=self.reveal_role_on_death,
            first_day_execution=self.first_day_execution,
            max_runoff_attempts=self.max_runoff_attempts,
        )

    model_config = {"env_file": ".env", "env_prefix": "WEREWOLF_"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
