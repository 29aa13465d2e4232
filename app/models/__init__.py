# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant que SQLAlchemy tente de résoudre les clés étrangères inter-modèles.

from app.models.user import User  # noqa: F401  doit précéder les tables qui y font référence
from app.models.class_session import ClassSession  # noqa: F401
from app.models.enrollment import Enrollment  # noqa: F401
from app.models.attendance_token import AttendanceToken, TokenScan  # noqa: F401
from app.models.attendance import AttendanceRecord  # noqa: F401
from app.models.notification import Notification  # noqa: F401
