from peewee import DateTimeField, Model, Proxy, SQL, TextField
from playhouse.sqlite_ext import AutoIncrementField

db_proxy = Proxy()


class TimestampField(DateTimeField):
    """DB가 기본값을 채우는 TIMESTAMP 컬럼입니다."""
    field_type = "TIMESTAMP"


class BaseModel(Model):
    class Meta:
        database = db_proxy


class Item(BaseModel):
    """사용자가 관리하는 단일 항목 레코드입니다."""
    id = AutoIncrementField()                 # 단조 증가 ID (전체 초기화 시에만 재사용)
    name = TextField(null=False)              # 항목 이름
    created_at = TimestampField(              # 삽입 시각 (DB 기본값)
        null=True, constraints=[SQL("DEFAULT CURRENT_TIMESTAMP")])

    class Meta:
        table_name = "items"
