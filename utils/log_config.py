from utils.logger import logger_manager, log_function

# Decorador para logging de funciones
log_function = log_function

# Logger ya configurado para el runner
# NOTA: cada módulo crea el suyo con logger_manager.setup_logger(__name__)
logger = logger_manager.setup_logger("sol_sniper")
