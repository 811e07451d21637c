from feednana.client.uploader import CHUNK_SIZE, FeednanaUploader, UploadState, iter_chunks

__all__ = ["CHUNK_SIZE", "FeednanaUploader", "UploadState", "iter_chunks"]
